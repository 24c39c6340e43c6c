"""Decoding of critique and remediation output.

Critique output is parsed fail-closed: text that is neither an explicit
clean result nor yields at least one well-formed finding raises
CritiqueMalformed, so unparseable output can never be mistaken for a
passing review.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from crucible.errors import CritiqueMalformed
from crucible.schemas.findings import Category, Finding, Severity

logger = logging.getLogger(__name__)

NO_ISSUES_MARKER = "NO_ISSUES_FOUND"

# Shorter output cannot hold a finding
_MIN_OUTPUT_CHARS = 10

_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_BLOCK_SPLIT_RE = re.compile(r"^---\s*$", re.MULTILINE)
_FIELD_RE = re.compile(r"^\s*([A-Z_]+)\s*:\s*(.*)$", re.MULTILINE)

# Numbered fallback, e.g.  1. **HIGH** — SQL built from user input
_PARAGRAPH_RE = re.compile(
    r"\d+\.\s*\*?\*?(HIGH|MEDIUM|LOW)\*?\*?\s*[-–—:]\s*"
    r"(.*?)"
    r"(?=\n\s*\d+\.\s*\*?\*?(?:HIGH|MEDIUM|LOW)\b|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_CATEGORY_WORD_RE = re.compile(
    r"\b(security|logic|error[-_ ]handling|test[-_ ]coverage|style)\b", re.IGNORECASE,
)
_LOCATION_RE = re.compile(r"`?([\w./-]+\.\w+):(\d+)`?")


# ── Critique ─────────────────────────────────────────────────────


def finding_from_tool_input(data: dict[str, Any]) -> Finding | None:
    """Build a Finding from ``report_finding`` tool arguments.

    Returns None (and logs) when the arguments do not describe a valid
    finding.
    """
    try:
        return Finding.model_validate(data)
    except ValidationError as exc:
        logger.warning("Discarding malformed report_finding call: %s", exc.errors()[:1])
        return None


def parse_findings(text: str) -> list[Finding]:
    """Parse critique text into findings.

    Accepted forms, tried in order: the exact ``NO_ISSUES_FOUND`` marker,
    a JSON findings document (bare or fenced), ``---`` delimited
    ``SEVERITY:``/``CATEGORY:``/``MESSAGE:`` blocks, and numbered
    ``1. **HIGH** — ...`` paragraphs.

    Raises:
        CritiqueMalformed: If the text is not an explicit clean result
            and yields no well-formed finding.
    """
    trimmed = text.strip()
    if trimmed == NO_ISSUES_MARKER:
        return []
    if len(trimmed) < _MIN_OUTPUT_CHARS:
        raise CritiqueMalformed("Critique output is empty or truncated", raw=text)

    document = _findings_from_json(trimmed)
    if document is not None:
        return document

    findings = _findings_from_blocks(trimmed)
    if findings:
        return findings

    findings = _findings_from_paragraphs(trimmed)
    if findings:
        logger.warning("Critique output parsed with the numbered-paragraph fallback")
        return findings

    raise CritiqueMalformed(
        f"No findings could be extracted from {len(trimmed)} chars of critique output",
        raw=text,
    )


def _json_candidates(text: str) -> Iterator[Any]:
    """Yield every JSON value found in fenced blocks or as the whole text."""
    for match in _FENCE_RE.finditer(text):
        try:
            yield json.loads(match.group(1))
        except json.JSONDecodeError:
            continue
    if text[:1] in "{[":
        try:
            yield json.loads(text)
        except json.JSONDecodeError:
            pass


def _findings_from_json(text: str) -> list[Finding] | None:
    """Return findings from a JSON document, or None if there is none.

    An empty ``findings`` list is an explicit clean result.
    """
    for value in _json_candidates(text):
        if isinstance(value, dict) and isinstance(value.get("findings"), list):
            entries = value["findings"]
        elif isinstance(value, list):
            entries = value
        else:
            continue

        findings: list[Finding] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            finding = finding_from_tool_input(entry)
            if finding is not None:
                findings.append(finding)
        if findings or not entries:
            return findings
    return None


def _findings_from_blocks(text: str) -> list[Finding]:
    findings: list[Finding] = []
    for block in _BLOCK_SPLIT_RE.split(text):
        fields = {
            key.upper(): value.strip()
            for key, value in _FIELD_RE.findall(block)
        }
        if not {"SEVERITY", "CATEGORY", "MESSAGE"} <= fields.keys():
            continue
        try:
            findings.append(Finding(
                severity=fields["SEVERITY"],
                category=fields["CATEGORY"],
                rule=fields.get("RULE", fields.get("RULE_ID", "")),
                file=fields.get("FILE", ""),
                line=fields.get("LINE", 0),
                message=fields["MESSAGE"],
                suggestion=fields.get("SUGGESTION", ""),
            ))
        except ValidationError:
            logger.warning(
                "Skipping finding block with invalid severity/category: %s / %s",
                fields["SEVERITY"], fields["CATEGORY"],
            )
    return findings


def _findings_from_paragraphs(text: str) -> list[Finding]:
    findings: list[Finding] = []
    for match in _PARAGRAPH_RE.finditer(text):
        content = match.group(2).strip()
        if len(content) <= _MIN_OUTPUT_CHARS:
            continue
        category_match = _CATEGORY_WORD_RE.search(content)
        location = _LOCATION_RE.search(content)
        findings.append(Finding(
            severity=Severity(match.group(1).upper()),
            category=category_match.group(1) if category_match else Category.LOGIC,
            file=location.group(1) if location else "",
            line=int(location.group(2)) if location else 0,
            message=content[:500],
        ))
    return findings


# ── Remediation ──────────────────────────────────────────────────


class ResolutionStatus(StrEnum):
    """What a remediation pass did with one finding."""

    FIXED = "fixed"
    REJECTED = "rejected"
    UNRESOLVED = "unresolved"


class Resolution(BaseModel):
    """One per-finding entry of a remediation report."""

    id: str = Field(description="Finding id as numbered in the prompt (F1, F2, ...)")
    status: ResolutionStatus = Field(description="fixed, rejected or unresolved")
    reason: str = Field(default="", description="Why the finding was rejected")


_RESOLUTION_LINE_RE = re.compile(
    r"^\s*[-*]?\s*\**(FIXED|REJECTED|UNRESOLVED)\**\s*:\s*\**(F\d+)\**"
    r"(?:\s*[-–—:]\s*(.*))?$",
    re.IGNORECASE | re.MULTILINE,
)


def normalise_finding_id(raw: object) -> str:
    """Map ``1``, ``"f1"`` or ``" F1 "`` to ``"F1"``."""
    text = str(raw).strip().upper()
    if text.isdigit():
        return f"F{int(text)}"
    return text


def resolution_from_tool_input(data: dict[str, Any]) -> Resolution | None:
    """Build a Resolution from ``report_resolution`` tool arguments."""
    try:
        payload = dict(data)
        payload["id"] = normalise_finding_id(payload.get("id", ""))
        payload["reason"] = str(payload.get("reason") or "")
        if isinstance(payload.get("status"), str):
            payload["status"] = payload["status"].strip().lower()
        return Resolution.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Discarding malformed report_resolution call: %s", exc.errors()[:1])
        return None


def parse_resolutions(text: str) -> list[Resolution]:
    """Parse a remediation report from text.

    Accepts a JSON ``{"resolutions": [...]}`` document (bare or fenced) or
    ``FIXED: F1`` / ``REJECTED: F2 — reason`` lines. Returns an empty list
    when the text contains no report.
    """
    trimmed = text.strip()
    for value in _json_candidates(trimmed):
        if isinstance(value, dict) and isinstance(value.get("resolutions"), list):
            parsed = [
                resolution_from_tool_input(entry)
                for entry in value["resolutions"]
                if isinstance(entry, dict)
            ]
            return [r for r in parsed if r is not None]

    resolutions: list[Resolution] = []
    for status, finding_id, reason in _RESOLUTION_LINE_RE.findall(trimmed):
        resolutions.append(Resolution(
            id=normalise_finding_id(finding_id),
            status=ResolutionStatus(status.lower()),
            reason=reason.strip(),
        ))
    return resolutions
