"""Finding and rejection schemas for the adversarial review loop.

A Finding is one issue reported by a critique pass. A Rejection is a
remediation pass refusing to act on a Finding; it stays unresolved until
the next critique pass either drops the finding (accepting the rejection)
or reports it again (overruling it).
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(StrEnum):
    """Severity levels a critique pass may assign."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Category(StrEnum):
    """Closed set of finding categories."""

    SECURITY = "security"
    LOGIC = "logic"
    ERROR_HANDLING = "error-handling"
    TEST_COVERAGE = "test-coverage"
    STYLE = "style"


BLOCKING_SEVERITIES = frozenset({Severity.HIGH, Severity.MEDIUM})

_WS_RE = re.compile(r"\s+")


def _normalise_message(message: str) -> str:
    return _WS_RE.sub(" ", message).strip().lower()


class Finding(BaseModel):
    """A single reviewer-reported issue. Immutable once emitted."""

    model_config = ConfigDict(frozen=True)

    severity: Severity = Field(description="HIGH, MEDIUM or LOW")
    category: Category = Field(description="Issue category")
    rule: str = Field(default="", description="Rule identifier the finding violates")
    file: str = Field(default="", description="File path relative to the project root")
    line: int = Field(default=0, ge=0, description="1-based line number, 0 if unknown")
    message: str = Field(description="What is wrong")
    suggestion: str = Field(default="", description="Suggested fix")

    @field_validator("severity", mode="before")
    @classmethod
    def _upper_severity(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _normalise_category(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-").replace(" ", "-")
        return value

    @field_validator("line", mode="before")
    @classmethod
    def _coerce_line(cls, value: object) -> object:
        # Reviewers write "42", "42-50" or "L42"; keep the first number.
        if value is None or value == "":
            return 0
        if isinstance(value, str):
            match = re.search(r"\d+", value)
            return int(match.group()) if match else 0
        return value

    @property
    def is_blocking(self) -> bool:
        """True for HIGH and MEDIUM findings, which prevent convergence."""
        return self.severity in BLOCKING_SEVERITIES

    @property
    def ref(self) -> str:
        """Textual identity used by rejection records."""
        rule = self.rule or self.category.value
        location = f"{self.file}:{self.line}" if self.file else "-"
        return f"{rule} @ {location} — {self.message}"

    def same_issue(self, other: Finding) -> bool:
        """Whether ``other`` describes the same issue as this finding.

        Rule and file must agree; then either the line or the normalised
        message must agree. Lines drift after a fix, so the message alone
        is enough to recognise a reaffirmed finding.
        """
        if (self.rule or self.category) != (other.rule or other.category):
            return False
        if self.file != other.file:
            return False
        if self.line and self.line == other.line:
            return True
        return _normalise_message(self.message) == _normalise_message(other.message)


class FindingsDocument(BaseModel):
    """Findings document read by downstream reporting (codex-review.json)."""

    findings: list[Finding] = Field(default_factory=list)


class Rejection(BaseModel):
    """A remediation pass declining to act on a finding.

    ``codex_accepted`` is ``None`` until the following critique pass
    re-evaluates the finding.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    finding: str = Field(description="Textual identity (Finding.ref) of the rejected finding")
    reason: str = Field(description="Why the remediation pass declined to fix it")
    codex_accepted: bool | None = Field(
        default=None,
        alias="codexAccepted",
        description="Set by the next critique pass: True if the finding was dropped",
    )


def count_by_severity(findings: list[Finding]) -> dict[Severity, int]:
    """Return a count of findings per severity, including zero counts."""
    counts = {severity: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity] += 1
    return counts


def blocking(findings: list[Finding]) -> list[Finding]:
    """Return the HIGH and MEDIUM findings, preserving order."""
    return [f for f in findings if f.is_blocking]
