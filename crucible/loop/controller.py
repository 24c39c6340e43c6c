"""Adversarial loop controller.

Alternates critique and remediation passes over a project's change set
for at most ``max_rounds`` rounds:

    critique ─► resolve previous rejections ─► converged?  ─► stop
                                              └► last round? ─► stop (exhausted)
                                              └► remediate ─► next round

A critique or remediation failure is retried immediately; a second
consecutive failure of the same kind trips the circuit breaker. A launch
failure (ProcessUnavailable) trips it at once. Cancelling the task that
runs the loop records the current round as abandoned and re-raises.

The Loop State is persisted through the LoopLedger after every
transition. Invoker failures never escape ``run``; the returned state's
``status`` says how the loop ended.
"""

from __future__ import annotations

import asyncio
import logging
import time

from crucible.changes import ChangeSet, ChangeSource
from crucible.dashboard.events import EventType, LoopEventEmitter
from crucible.errors import (
    ChangeSetError,
    CritiqueError,
    LoopBusy,
    ProcessUnavailable,
    RemediationError,
)
from crucible.loop.ledger import LoopLedger
from crucible.review.critique import CritiqueInvoker, CritiqueResult
from crucible.review.remediation import RemediationInvoker, RemediationResult
from crucible.schemas.config import LoopConfig
from crucible.schemas.findings import Finding, Rejection, count_by_severity
from crucible.schemas.loop import LoopState, LoopStatus, RoundOutcome, RoundRecord
from crucible.workspace import RuleSet

logger = logging.getLogger(__name__)

# State paths of loops currently running in this process
_active_loops: set[str] = set()


class _RoundStop(Exception):
    """Internal: the current round ended the loop."""


class AdversarialLoop:
    """Runs the critique→fix rounds for one project."""

    def __init__(
        self,
        critique: CritiqueInvoker,
        remediation: RemediationInvoker,
        ledger: LoopLedger,
        changes: ChangeSource,
        *,
        rule_set: RuleSet | None = None,
        config: LoopConfig | None = None,
        emitter: LoopEventEmitter | None = None,
    ) -> None:
        self._critique = critique
        self._remediation = remediation
        self._ledger = ledger
        self._changes = changes
        self._rule_set = rule_set
        self._config = config or LoopConfig()
        self._emitter = emitter

        self._state = LoopState(
            project_id=ledger.project_id, max_rounds=self._config.max_rounds,
        )
        self._critique_failures = 0
        self._remediation_failures = 0
        self._remediation_session: str | None = None
        self._pending_rejections: list[Rejection] = []
        self._rejected_findings: dict[str, Finding] = {}
        self._carried: list[Finding] = []
        self._entering: list[Finding] = []
        self._round_open = False
        self.total_cost = 0.0
        self.duration_seconds = 0.0

    @property
    def state(self) -> LoopState:
        return self._state

    # ── Entry point ──────────────────────────────────────────────

    async def run(self, *, resume: bool = False) -> LoopState:
        """Run rounds until convergence, exhaustion, the circuit breaker or
        cancellation, and return the final state.

        Args:
            resume: Continue the persisted state instead of starting fresh.
                A persisted state that is already terminal is returned
                unchanged.

        Raises:
            LoopBusy: If a loop for the same project is already running.
            asyncio.CancelledError: After the abandoned round is persisted.
        """
        key = str(self._ledger.state_path.resolve())
        if key in _active_loops:
            raise LoopBusy(f"A loop is already running for {self._ledger.project_id}")
        _active_loops.add(key)
        start = time.monotonic()
        try:
            if resume and not self._restore():
                return self._state
            return await self._run_rounds(resumed=resume)
        finally:
            _active_loops.discard(key)
            self.duration_seconds = time.monotonic() - start

    def _restore(self) -> bool:
        """Load the persisted state; False if there is nothing to continue."""
        persisted = self._ledger.load_state()
        if persisted is None:
            logger.info("No persisted state for %s; starting fresh", self._ledger.project_id)
            return True
        if persisted.is_terminal:
            logger.info(
                "Persisted loop for %s already finished (%s); nothing to resume",
                self._ledger.project_id,
                "exhausted" if persisted.exhausted else persisted.status,
            )
            self._state = persisted
            return False

        # A round that started but never recorded its outcome is re-run
        persisted.round = len(persisted.rounds)
        self._discard_unrecorded_critique(persisted)
        self._state = persisted
        self._carried = list(persisted.open_findings)
        last = persisted.last_round
        if last is not None:
            self._pending_rejections = [
                r for r in last.rejection_reasons if r.codex_accepted is None
            ]
            self._rejected_findings = {f.ref: f for f in persisted.open_findings}
        logger.info(
            "Resuming loop for %s after round %d of %d",
            self._ledger.project_id, persisted.round, persisted.max_rounds,
        )
        return True

    @staticmethod
    def _discard_unrecorded_critique(persisted: LoopState) -> None:
        """Roll back what an unfinished round's critique left in the state.

        Every recorded round appended exactly ``codex_findings`` entries to
        the cumulative list, so anything past their sum belongs to the
        round being re-run. Its verdicts on the previous round's
        rejections are dropped too, so the re-run critique re-evaluates
        them.
        """
        recorded = sum(r.codex_findings for r in persisted.rounds)
        if len(persisted.cumulative_findings) <= recorded:
            return
        logger.info(
            "Discarding %d findings from unfinished round %d",
            len(persisted.cumulative_findings) - recorded, persisted.round + 1,
        )
        del persisted.cumulative_findings[recorded:]
        last = persisted.last_round
        if last is None:
            persisted.open_findings = []
            return
        persisted.open_findings = persisted.cumulative_findings[recorded - last.codex_findings:]
        last.rejection_reasons = [
            r.model_copy(update={"codex_accepted": None}) for r in last.rejection_reasons
        ]

    async def _run_rounds(self, resumed: bool) -> LoopState:
        state = self._state
        await self._emit(
            EventType.LOOP_STARTED,
            project_id=state.project_id,
            round=state.round,
            max_rounds=state.max_rounds,
            resumed=resumed,
        )
        self._persist()

        try:
            while state.status == LoopStatus.IN_PROGRESS and state.round < state.max_rounds:
                state.round += 1
                self._round_open = True
                self._entering = list(self._carried)
                await self._emit(
                    EventType.ROUND_STARTED, round=state.round, max_rounds=state.max_rounds,
                )
                self._persist()
                try:
                    await self._run_round(state.round)
                except _RoundStop:
                    break
        except asyncio.CancelledError:
            await self._abandon()
            raise

        logger.info(
            "Loop for %s finished: %s after %d rounds",
            state.project_id, "exhausted" if state.exhausted else state.status, state.round,
        )
        return state

    # ── One round ────────────────────────────────────────────────

    async def _run_round(self, round_number: int) -> None:
        changes, critique = await self._critique_with_retry(round_number)
        findings = critique.findings
        self._entering = list(findings)

        await self._resolve_rejections(findings)
        state = self._state
        state.cumulative_findings.extend(findings)
        state.open_findings = list(findings)
        state.error = ""
        self._ledger.write_findings(findings)
        counts = count_by_severity(findings)
        await self._emit(
            EventType.CRITIQUE_COMPLETED,
            round=round_number,
            findings=len(findings),
            **{severity.value.lower(): count for severity, count in counts.items()},
        )

        blocking = [f for f in findings if f.is_blocking]
        if not blocking:
            self._record(RoundRecord.unchanged(round_number, findings, RoundOutcome.CONVERGED))
            state.status = LoopStatus.CONVERGED
            self._persist()
            await self._emit(EventType.LOOP_CONVERGED, round=round_number, low=len(findings))
            raise _RoundStop

        if round_number >= state.max_rounds:
            self._record(RoundRecord.unchanged(round_number, findings, RoundOutcome.EXHAUSTED))
            self._persist()
            await self._emit(
                EventType.LOOP_EXHAUSTED, round=round_number, blocking=len(blocking),
            )
            raise _RoundStop

        self._persist()
        fix = await self._remediate_with_retry(round_number, findings, changes)

        self._record(RoundRecord(
            round=round_number,
            codex_findings=len(findings),
            fixed=len(fix.fixed),
            rejected=len(fix.rejections),
            rejection_reasons=list(fix.rejections),
            remaining=fix.remaining,
            outcome=RoundOutcome.REMEDIATED,
            blocking=len(blocking),
        ))
        rejected_refs = {r.finding for r in fix.rejections}
        self._carried = [
            f for f in findings if f in fix.unresolved or f.ref in rejected_refs
        ]
        self._pending_rejections = list(fix.rejections)
        self._rejected_findings = {f.ref: f for f in findings}
        self._remediation_session = fix.session_id
        self._persist()
        await self._emit(
            EventType.REMEDIATION_COMPLETED,
            round=round_number,
            fixed=len(fix.fixed),
            rejected=len(fix.rejections),
            unresolved=len(fix.unresolved),
        )

    async def _critique_with_retry(self, round_number: int) -> tuple[ChangeSet, CritiqueResult]:
        attempt = 0
        while True:
            attempt += 1
            await self._emit(EventType.CRITIQUE_STARTED, round=round_number, attempt=attempt)
            try:
                changes = await asyncio.to_thread(self._changes.collect)
                result = await self._critique.review(
                    changes, self._rule_set, rejections=self._pending_rejections,
                )
            except ProcessUnavailable as exc:
                await self._emit(
                    EventType.ERROR, phase="critique", round=round_number, message=str(exc),
                )
                await self._trip(round_number, f"Critique process unavailable: {exc}")
                raise _RoundStop from exc
            except (CritiqueError, ChangeSetError) as exc:
                self._critique_failures += 1
                self._state.error = str(exc)
                logger.warning(
                    "Critique failed in round %d (%d consecutive): %s",
                    round_number, self._critique_failures, exc,
                )
                await self._emit(
                    EventType.CRITIQUE_FAILED,
                    round=round_number,
                    attempt=attempt,
                    consecutive=self._critique_failures,
                    error=str(exc),
                )
                if self._critique_failures > self._config.critique_retries:
                    await self._trip(
                        round_number,
                        f"{self._critique_failures} consecutive critique failures: {exc}",
                    )
                    raise _RoundStop from exc
                await self._emit(
                    EventType.RETRY_TRIGGERED, phase="critique", round=round_number,
                    attempt=attempt + 1,
                )
                continue

            self._critique_failures = 0
            self.total_cost += result.cost_usd
            return changes, result

    async def _remediate_with_retry(
        self, round_number: int, findings: list[Finding], changes: ChangeSet,
    ) -> RemediationResult:
        attempt = 0
        while True:
            attempt += 1
            # Retries start a fresh session in case the resumed one is the problem
            session_id = (
                self._remediation_session
                if self._config.resume_remediation_session and attempt == 1
                else None
            )
            await self._emit(
                EventType.REMEDIATION_STARTED,
                round=round_number, attempt=attempt, findings=len(findings),
            )
            try:
                result = await self._remediation.fix(findings, changes, session_id=session_id)
            except ProcessUnavailable as exc:
                await self._emit(
                    EventType.ERROR, phase="remediation", round=round_number, message=str(exc),
                )
                await self._trip(round_number, f"Remediation process unavailable: {exc}")
                raise _RoundStop from exc
            except RemediationError as exc:
                self._remediation_failures += 1
                self._state.error = str(exc)
                logger.warning(
                    "Remediation failed in round %d (%d consecutive): %s",
                    round_number, self._remediation_failures, exc,
                )
                await self._emit(
                    EventType.REMEDIATION_FAILED,
                    round=round_number,
                    attempt=attempt,
                    consecutive=self._remediation_failures,
                    error=str(exc),
                )
                if self._remediation_failures > self._config.remediation_retries:
                    await self._trip(
                        round_number,
                        f"{self._remediation_failures} consecutive remediation failures: {exc}",
                    )
                    raise _RoundStop from exc
                await self._emit(
                    EventType.RETRY_TRIGGERED, phase="remediation", round=round_number,
                    attempt=attempt + 1,
                )
                continue

            self._remediation_failures = 0
            self._state.error = ""
            self.total_cost += result.cost_usd
            return result

    # ── Transitions ──────────────────────────────────────────────

    async def _resolve_rejections(self, findings: list[Finding]) -> None:
        """Settle the previous round's rejections against a new critique."""
        if not self._pending_rejections:
            return
        previous = self._previous_remediated_round()
        accepted = overruled = 0
        resolved: list[Rejection] = []
        for rejection in (previous.rejection_reasons if previous else []):
            if rejection.codex_accepted is not None:
                resolved.append(rejection)
                continue
            original = self._rejected_findings.get(rejection.finding)
            if original is not None:
                reaffirmed = any(original.same_issue(f) for f in findings)
            else:
                reaffirmed = any(f.ref == rejection.finding for f in findings)
            resolved.append(rejection.model_copy(update={"codex_accepted": not reaffirmed}))
            if reaffirmed:
                overruled += 1
            else:
                accepted += 1
        if previous is not None:
            previous.rejection_reasons = resolved
        self._pending_rejections = []
        logger.info("Rejections resolved: %d accepted, %d overruled", accepted, overruled)
        await self._emit(
            EventType.REJECTIONS_RESOLVED, accepted=accepted, overruled=overruled,
        )

    def _previous_remediated_round(self) -> RoundRecord | None:
        for record in reversed(self._state.rounds):
            if record.outcome == RoundOutcome.REMEDIATED:
                return record
        return None

    def _record(self, record: RoundRecord) -> None:
        self._state.rounds.append(record)
        self._round_open = False

    async def _trip(self, round_number: int, reason: str) -> None:
        state = self._state
        self._record(RoundRecord.unchanged(round_number, self._entering, RoundOutcome.FAILED))
        state.status = LoopStatus.CIRCUIT_BREAKER
        state.error = reason
        self._persist()
        logger.error("Circuit breaker tripped for %s: %s", state.project_id, reason)
        await self._emit(EventType.CIRCUIT_BREAKER, round=round_number, reason=reason)

    async def _abandon(self) -> None:
        state = self._state
        if self._round_open:
            self._record(
                RoundRecord.unchanged(state.round, self._entering, RoundOutcome.ABANDONED)
            )
        state.status = LoopStatus.ABORTED
        self._persist()
        logger.warning("Loop for %s aborted in round %d", state.project_id, state.round)
        await self._emit(EventType.ROUND_ABANDONED, round=state.round)
        await self._emit(EventType.LOOP_ABORTED, round=state.round)

    def _persist(self) -> None:
        self._ledger.save_state(self._state)

    async def _emit(self, event_type: EventType, **data: object) -> None:
        if self._emitter:
            await self._emitter.emit(event_type, **data)
