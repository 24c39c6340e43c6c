"""Loop State ledger schemas.

Defines the persisted adversarial-state document: the loop status, one
RoundRecord per critique→fix cycle, and the cumulative findings history.
Field aliases match the camelCase document read by reporting tools.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from crucible.schemas.findings import Finding, Rejection


class LoopStatus(StrEnum):
    """Top-level loop status.

    IN_PROGRESS: rounds are still running, or maxRounds was exhausted
        without convergence (see LoopState.exhausted).
    CONVERGED: a critique pass reported no HIGH or MEDIUM findings.
    CIRCUIT_BREAKER: repeated invocation failures stopped the loop.
    ABORTED: the caller cancelled the loop mid-round.
    """

    IN_PROGRESS = "in_progress"
    CONVERGED = "converged"
    CIRCUIT_BREAKER = "circuit_breaker"
    ABORTED = "aborted"


class RoundOutcome(StrEnum):
    """How a single round ended."""

    REVIEWED = "reviewed"
    REMEDIATED = "remediated"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    ABANDONED = "abandoned"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RoundRecord(BaseModel):
    """One critique→fix cycle in the ledger.

    Conservation holds for every record: ``fixed + remaining`` equals the
    number of findings that entered the round.
    """

    model_config = ConfigDict(populate_by_name=True)

    round: int = Field(ge=1, description="1-based round number")
    codex_findings: int = Field(
        default=0, ge=0, alias="codexFindings",
        description="Findings entering the round",
    )
    fixed: int = Field(default=0, ge=0, description="Findings the remediation pass fixed")
    rejected: int = Field(default=0, ge=0, description="Findings the remediation pass rejected")
    rejection_reasons: list[Rejection] = Field(
        default_factory=list, alias="rejectionReasons",
        description="Rejections created during this round",
    )
    remaining: int = Field(default=0, ge=0, description="Findings still open at round end")
    outcome: RoundOutcome = Field(
        default=RoundOutcome.REVIEWED, description="How the round ended",
    )
    blocking: int = Field(
        default=0, ge=0, description="HIGH and MEDIUM findings entering the round",
    )

    @model_validator(mode="after")
    def _check_conservation(self) -> RoundRecord:
        if self.fixed + self.remaining != self.codex_findings:
            raise ValueError(
                f"round {self.round}: fixed ({self.fixed}) + remaining "
                f"({self.remaining}) != findings entering ({self.codex_findings})"
            )
        if self.rejected != len(self.rejection_reasons):
            raise ValueError(
                f"round {self.round}: rejected count {self.rejected} does not "
                f"match {len(self.rejection_reasons)} rejection records"
            )
        if self.rejected > self.remaining:
            raise ValueError(
                f"round {self.round}: rejected ({self.rejected}) exceeds "
                f"remaining ({self.remaining})"
            )
        return self

    @classmethod
    def unchanged(
        cls, round_number: int, entering: list[Finding], outcome: RoundOutcome,
    ) -> RoundRecord:
        """A round in which nothing was fixed: every entering finding remains."""
        return cls(
            round=round_number,
            codex_findings=len(entering),
            fixed=0,
            rejected=0,
            remaining=len(entering),
            outcome=outcome,
            blocking=sum(1 for f in entering if f.is_blocking),
        )


class LoopState(BaseModel):
    """Persisted ledger for one adversarial loop.

    Exclusively owned by the loop controller and written after every
    state transition.
    """

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(default="", alias="projectId", description="Project identifier")
    round: int = Field(default=0, ge=0, description="Current round number")
    max_rounds: int = Field(default=3, ge=1, alias="maxRounds", description="Round budget")
    status: LoopStatus = Field(default=LoopStatus.IN_PROGRESS, description="Loop status")
    rounds: list[RoundRecord] = Field(default_factory=list, description="Round ledger")
    cumulative_findings: list[Finding] = Field(
        default_factory=list, alias="cumulativeFindings",
        description="Every finding from every critique pass, never pruned",
    )
    open_findings: list[Finding] = Field(
        default_factory=list, alias="openFindings",
        description="Findings from the most recent successful critique pass",
    )
    error: str = Field(default="", description="Last invocation failure, if any")
    started_at: datetime = Field(default_factory=_utcnow, alias="startedAt")
    updated_at: datetime = Field(default_factory=_utcnow, alias="updatedAt")

    @property
    def open_blocking(self) -> list[Finding]:
        """HIGH and MEDIUM findings from the latest critique pass."""
        return [f for f in self.open_findings if f.is_blocking]

    @property
    def exhausted(self) -> bool:
        """True when maxRounds ran out with blocking findings still open."""
        return (
            self.status == LoopStatus.IN_PROGRESS
            and self.round >= self.max_rounds
            and bool(self.rounds)
            and self.rounds[-1].outcome == RoundOutcome.EXHAUSTED
            and bool(self.open_blocking)
        )

    @property
    def is_terminal(self) -> bool:
        """True once the loop can make no further progress."""
        return self.status != LoopStatus.IN_PROGRESS or self.exhausted

    @property
    def last_round(self) -> RoundRecord | None:
        return self.rounds[-1] if self.rounds else None

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def to_document(self) -> dict:
        """Serialise to the camelCase JSON document."""
        return self.model_dump(mode="json", by_alias=True)
