"""Run history schemas.

Defines the RunRecord (a finished loop run for storage/retrieval),
RunSummary (lightweight listing), and RunQuery (filter params).
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from crucible.schemas.loop import LoopState, LoopStatus


class RunRecord(BaseModel):
    """Full record of one adversarial loop run."""

    run_id: str = Field(description="Unique run identifier (UUID hex)")
    project_id: str = Field(default="", description="Project the loop ran against")
    started_at: datetime = Field(description="When the loop started")
    completed_at: datetime | None = Field(
        default=None, description="When the loop stopped",
    )
    state: LoopState = Field(description="Final loop state")
    duration_seconds: float = Field(default=0.0, description="Wall-clock duration")
    total_cost: float = Field(default=0.0, description="Reported cost in USD")

    @property
    def converged(self) -> bool:
        return self.state.status == LoopStatus.CONVERGED


class RunSummary(BaseModel):
    """Lightweight run summary for listing."""

    run_id: str = Field(description="Unique run identifier")
    project_id: str = Field(default="", description="Project identifier")
    started_at: datetime = Field(description="When the loop started")
    status: str = Field(description="Final loop status")
    exhausted: bool = Field(default=False, description="Round budget ran out")
    rounds: int = Field(default=0, description="Rounds executed")
    converged: bool = Field(default=False, description="Whether the loop converged")
    open_blocking: int = Field(default=0, description="HIGH+MEDIUM findings left open")
    total_cost: float = Field(default=0.0, description="Reported cost in USD")
    duration_seconds: float = Field(default=0.0, description="Duration in seconds")


class RunQuery(BaseModel):
    """Query parameters for listing runs."""

    limit: int = Field(default=20, ge=1, le=100, description="Max runs to return")
    offset: int = Field(default=0, ge=0, description="Offset for pagination")
    project_filter: str | None = Field(
        default=None, description="Filter by project id (exact match)",
    )
    status_filter: str | None = Field(
        default=None, description="Filter by final loop status",
    )
    since: str | None = Field(
        default=None, description="Filter runs started after this ISO date",
    )
