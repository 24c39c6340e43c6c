"""Critique invoker: one review pass over the current change set.

Renders the critique prompt, runs it through the backend in REVIEW mode
and turns the stream into findings. Findings come from ``report_finding``
tool calls when the process makes any, otherwise from the text output.
Every failure (timeout, error record, missing result, unparseable text)
raises a CritiqueError; a failed pass never yields an empty finding list.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from pydantic import BaseModel, Field

from crucible.changes import ChangeSet
from crucible.channel.backend import InvokeMode, ProcessBackend
from crucible.dashboard.events import LoopEventEmitter
from crucible.errors import CritiqueMalformed, CritiqueTimeout
from crucible.prompts import render_prompt
from crucible.review.parsing import (
    NO_ISSUES_MARKER,
    finding_from_tool_input,
    parse_findings,
)
from crucible.review.transcript import Transcript, collect
from crucible.schemas.findings import Finding, Rejection
from crucible.workspace import RuleSet

logger = logging.getLogger(__name__)

REPORT_FINDING_TOOL = "report_finding"


class CritiqueResult(BaseModel):
    """Outcome of a successful critique pass."""

    findings: list[Finding] = Field(default_factory=list)
    raw: str = Field(default="", description="Collected text output")
    session_id: str | None = Field(default=None, description="Reported session id")
    cost_usd: float = Field(default=0.0, description="Reported cost in USD")
    duration_seconds: float = Field(default=0.0, description="Wall-clock duration")


class CritiqueInvoker:
    """Runs critique passes through a ProcessBackend."""

    def __init__(
        self,
        backend: ProcessBackend,
        timeout: float = 600.0,
        emitter: LoopEventEmitter | None = None,
    ) -> None:
        self._backend = backend
        self._timeout = timeout
        self._emitter = emitter

    async def review(
        self,
        changes: ChangeSet,
        rule_set: RuleSet | None = None,
        *,
        rejections: Sequence[Rejection] = (),
    ) -> CritiqueResult:
        """Review ``changes`` and return the reported findings.

        Rejections from the previous round are included in the prompt so
        the reviewer can drop findings whose rejection reason holds.

        Raises:
            CritiqueTimeout: If no result record arrives within the timeout.
            CritiqueMalformed: If the process reports an error, the stream
                ends without a result record, or the output cannot be read.
            ProcessUnavailable: If the critique process cannot be launched.
        """
        prompt = render_prompt(
            "critique",
            changes=changes,
            rules=rule_set.rules if rule_set else [],
            rejections=list(rejections),
            no_issues_marker=NO_ISSUES_MARKER,
        )
        transcript = Transcript(tool_name=REPORT_FINDING_TOOL)
        start = time.monotonic()

        try:
            async with asyncio.timeout(self._timeout):
                await collect(
                    self._backend, InvokeMode.REVIEW, prompt, transcript,
                    emitter=self._emitter,
                )
        except TimeoutError as exc:
            raise CritiqueTimeout(
                f"Critique did not finish within {self._timeout:.0f}s",
                raw=transcript.raw,
            ) from exc

        failure = transcript.failure()
        if failure:
            raise CritiqueMalformed(f"Critique failed: {failure}", raw=transcript.raw)

        if transcript.tool_calls:
            parsed = [finding_from_tool_input(call.input) for call in transcript.tool_calls]
            findings = [f for f in parsed if f is not None]
            if not findings:
                raise CritiqueMalformed(
                    f"All {len(parsed)} report_finding calls were malformed",
                    raw=transcript.raw,
                )
        else:
            findings = parse_findings(transcript.text)

        duration = time.monotonic() - start
        logger.info(
            "Critique reported %d findings (%d blocking) in %.1fs",
            len(findings), sum(1 for f in findings if f.is_blocking), duration,
        )
        return CritiqueResult(
            findings=findings,
            raw=transcript.raw,
            session_id=transcript.session_id,
            cost_usd=transcript.cost_usd,
            duration_seconds=duration,
        )
