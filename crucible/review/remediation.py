"""Remediation invoker: one fix pass over the current findings.

Findings are numbered F1..Fn in the prompt. The remediation process
answers per id (JSON report, ``report_resolution`` tool calls, or
``FIXED:``/``REJECTED:`` lines). Any finding it neither fixed nor
rejected is unresolved.
"""

from __future__ import annotations

import asyncio
import logging
import time

from pydantic import BaseModel, Field

from crucible.changes import ChangeSet
from crucible.channel.backend import InvokeMode, ProcessBackend
from crucible.dashboard.events import LoopEventEmitter
from crucible.errors import RemediationMalformed, RemediationTimeout
from crucible.prompts import render_prompt
from crucible.review.parsing import (
    Resolution,
    ResolutionStatus,
    parse_resolutions,
    resolution_from_tool_input,
)
from crucible.review.transcript import Transcript, collect
from crucible.schemas.findings import Finding, Rejection

logger = logging.getLogger(__name__)

REPORT_RESOLUTION_TOOL = "report_resolution"
DEFAULT_REJECTION_REASON = "no reason given"


class RemediationResult(BaseModel):
    """Outcome of a successful remediation pass."""

    fixed: list[Finding] = Field(default_factory=list)
    rejections: list[Rejection] = Field(default_factory=list)
    unresolved: list[Finding] = Field(default_factory=list)
    raw: str = Field(default="", description="Collected text output")
    session_id: str | None = Field(
        default=None, description="Session id to resume in the next round",
    )
    cost_usd: float = Field(default=0.0, description="Reported cost in USD")
    duration_seconds: float = Field(default=0.0, description="Wall-clock duration")

    @property
    def remaining(self) -> int:
        return len(self.rejections) + len(self.unresolved)


def apply_resolutions(
    findings: list[Finding], resolutions: list[Resolution],
) -> tuple[list[Finding], list[Rejection], list[Finding]]:
    """Split ``findings`` into fixed, rejected and unresolved.

    The first resolution for an id wins; ids that match no finding are
    ignored.
    """
    by_id: dict[str, Resolution] = {}
    for resolution in resolutions:
        if resolution.id in by_id:
            continue
        by_id[resolution.id] = resolution

    unknown = set(by_id) - {f"F{i}" for i in range(1, len(findings) + 1)}
    if unknown:
        logger.warning("Remediation reported unknown finding ids: %s", sorted(unknown))

    fixed: list[Finding] = []
    rejections: list[Rejection] = []
    unresolved: list[Finding] = []
    for index, finding in enumerate(findings, start=1):
        resolution = by_id.get(f"F{index}")
        if resolution is None or resolution.status == ResolutionStatus.UNRESOLVED:
            unresolved.append(finding)
        elif resolution.status == ResolutionStatus.FIXED:
            fixed.append(finding)
        else:
            rejections.append(Rejection(
                finding=finding.ref,
                reason=resolution.reason.strip() or DEFAULT_REJECTION_REASON,
            ))
    return fixed, rejections, unresolved


class RemediationInvoker:
    """Runs remediation passes through a ProcessBackend."""

    def __init__(
        self,
        backend: ProcessBackend,
        timeout: float = 900.0,
        emitter: LoopEventEmitter | None = None,
    ) -> None:
        self._backend = backend
        self._timeout = timeout
        self._emitter = emitter

    async def fix(
        self,
        findings: list[Finding],
        changes: ChangeSet | None = None,
        *,
        session_id: str | None = None,
    ) -> RemediationResult:
        """Ask the remediation process to fix ``findings``.

        Args:
            findings: Findings from the latest critique pass.
            changes: The change set the findings refer to.
            session_id: Remediation session to resume, if any.

        Raises:
            RemediationTimeout: If no result record arrives within the timeout.
            RemediationMalformed: If the process reports an error, the stream
                ends without a result record, or no per-finding report is found.
            ProcessUnavailable: If the remediation process cannot be launched.
        """
        prompt = render_prompt("remediation", findings=findings, changes=changes)
        transcript = Transcript(tool_name=REPORT_RESOLUTION_TOOL)
        start = time.monotonic()

        try:
            async with asyncio.timeout(self._timeout):
                await collect(
                    self._backend, InvokeMode.FIX, prompt, transcript,
                    session_id=session_id, emitter=self._emitter,
                )
        except TimeoutError as exc:
            raise RemediationTimeout(
                f"Remediation did not finish within {self._timeout:.0f}s",
                raw=transcript.raw,
            ) from exc

        failure = transcript.failure()
        if failure:
            raise RemediationMalformed(f"Remediation failed: {failure}", raw=transcript.raw)

        resolutions = [
            r for r in (resolution_from_tool_input(call.input) for call in transcript.tool_calls)
            if r is not None
        ]
        if not resolutions:
            resolutions = parse_resolutions(transcript.text)
        if not resolutions:
            raise RemediationMalformed(
                "Remediation output carried no per-finding report", raw=transcript.raw,
            )

        fixed, rejections, unresolved = apply_resolutions(findings, resolutions)
        duration = time.monotonic() - start
        logger.info(
            "Remediation fixed %d, rejected %d, left %d unresolved in %.1fs",
            len(fixed), len(rejections), len(unresolved), duration,
        )
        return RemediationResult(
            fixed=fixed,
            rejections=rejections,
            unresolved=unresolved,
            raw=transcript.raw,
            session_id=transcript.session_id or session_id,
            cost_usd=transcript.cost_usd,
            duration_seconds=duration,
        )
