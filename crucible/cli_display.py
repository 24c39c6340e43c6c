"""Rich display components for the Crucible CLI.

Provides the live loop progress printer (an event listener), the final
outcome panel, and the tables used by ``status``, ``findings`` and
``history``.
"""

from __future__ import annotations

import time

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from crucible.dashboard.events import EventType, LoopEvent
from crucible.schemas.findings import Finding, Severity, count_by_severity
from crucible.schemas.loop import LoopState, LoopStatus, RoundOutcome
from crucible.schemas.runs import RunSummary

# ── Colors ────────────────────────────────────────────────────────

BRAND = {
    "ember": "#ff8c42",
    "green": "#00ff88",
    "amber": "#ffaa00",
    "red": "#ff4444",
    "gold": "#D4A843",
    "dim": "#6a8a6a",
}

_SEVERITY_STYLE = {
    Severity.HIGH: f"bold {BRAND['red']}",
    Severity.MEDIUM: BRAND["amber"],
    Severity.LOW: BRAND["dim"],
}

_OUTCOME_STYLE = {
    RoundOutcome.REVIEWED: "white",
    RoundOutcome.REMEDIATED: BRAND["ember"],
    RoundOutcome.CONVERGED: BRAND["green"],
    RoundOutcome.EXHAUSTED: BRAND["amber"],
    RoundOutcome.FAILED: BRAND["red"],
    RoundOutcome.ABANDONED: BRAND["red"],
}


def status_label(state: LoopState) -> Text:
    """One-word loop status, exhaustion shown separately from in-progress."""
    if state.exhausted:
        return Text("EXHAUSTED", style=f"bold {BRAND['amber']}")
    if state.status == LoopStatus.CONVERGED:
        return Text("CONVERGED", style=f"bold {BRAND['green']}")
    if state.status == LoopStatus.CIRCUIT_BREAKER:
        return Text("CIRCUIT BREAKER", style=f"bold {BRAND['red']}")
    if state.status == LoopStatus.ABORTED:
        return Text("ABORTED", style=f"bold {BRAND['red']}")
    return Text("IN PROGRESS", style=BRAND["ember"])


def _summary_status(summary: RunSummary) -> Text:
    if summary.exhausted:
        return Text("EXHAUSTED", style=BRAND["amber"])
    style = {
        LoopStatus.CONVERGED.value: BRAND["green"],
        LoopStatus.CIRCUIT_BREAKER.value: BRAND["red"],
        LoopStatus.ABORTED.value: BRAND["red"],
    }.get(summary.status, BRAND["ember"])
    return Text(summary.status.upper().replace("_", " "), style=style)


def severity_counts(findings: list[Finding]) -> Text:
    """``2 HIGH  1 MEDIUM  0 LOW`` with per-severity colors."""
    text = Text()
    for i, (severity, count) in enumerate(count_by_severity(findings).items()):
        if i:
            text.append("  ")
        text.append(f"{count} {severity.value}", style=_SEVERITY_STYLE[severity])
    return text


# ── Tables ────────────────────────────────────────────────────────


def rounds_table(state: LoopState) -> Table:
    table = Table(title="Rounds")
    table.add_column("Round", justify="right", style="cyan")
    table.add_column("Outcome")
    table.add_column("Findings", justify="right")
    table.add_column("Blocking", justify="right")
    table.add_column("Fixed", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Remaining", justify="right")

    for r in state.rounds:
        table.add_row(
            str(r.round),
            Text(r.outcome.value, style=_OUTCOME_STYLE[r.outcome]),
            str(r.codex_findings),
            str(r.blocking),
            str(r.fixed),
            str(r.rejected),
            str(r.remaining),
        )
    return table


def findings_table(findings: list[Finding], title: str = "Findings") -> Table:
    table = Table(title=f"{title} ({len(findings)})", show_lines=True)
    table.add_column("Severity", no_wrap=True)
    table.add_column("Category", style="dim")
    table.add_column("Location", style="cyan", max_width=40)
    table.add_column("Message", max_width=70)

    for f in findings:
        location = f"{f.file}:{f.line}" if f.file and f.line else (f.file or "-")
        message = f.message
        if f.suggestion:
            message += f"\n[dim]Fix: {f.suggestion}[/dim]"
        table.add_row(
            Text(f.severity.value, style=_SEVERITY_STYLE[f.severity]),
            f.category.value,
            location,
            message,
        )
    return table


def rejections_table(state: LoopState) -> Table:
    """Every rejection recorded so far and how the reviewer settled it."""
    table = Table(title="Rejections", show_lines=True)
    table.add_column("Round", justify="right", style="cyan")
    table.add_column("Finding", max_width=60)
    table.add_column("Reason", max_width=50)
    table.add_column("Reviewer")

    verdicts = {
        True: Text("accepted", style=BRAND["green"]),
        False: Text("overruled", style=BRAND["red"]),
        None: Text("pending", style=BRAND["dim"]),
    }
    for record in state.rounds:
        for rejection in record.rejection_reasons:
            table.add_row(
                str(record.round),
                rejection.finding,
                rejection.reason,
                verdicts[rejection.codex_accepted],
            )
    return table


def runs_table(summaries: list[RunSummary]) -> Table:
    table = Table(title=f"Runs ({len(summaries)} shown)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Project")
    table.add_column("Started", style="dim")
    table.add_column("Status")
    table.add_column("Rounds", justify="right")
    table.add_column("Open", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Duration", justify="right")

    for s in summaries:
        table.add_row(
            s.run_id[:8],
            s.project_id or "-",
            s.started_at.strftime("%Y-%m-%d %H:%M"),
            _summary_status(s),
            str(s.rounds),
            str(s.open_blocking),
            f"${s.total_cost:.4f}",
            f"{s.duration_seconds:.1f}s",
        )
    return table


def state_panel(state: LoopState, title: str | None = None) -> Panel:
    """Compact overview of a loop state."""
    content = Text()
    content.append("  Status:    ", style="bold")
    content.append_text(status_label(state))
    content.append("\n")
    content.append("  Round:     ", style="bold")
    content.append(f"{state.round} of {state.max_rounds}")
    content.append("\n")
    content.append("  Open:      ", style="bold")
    content.append_text(severity_counts(state.open_findings))
    content.append("\n")
    content.append("  Reported:  ", style="bold")
    content.append(f"{len(state.cumulative_findings)} findings across all rounds")
    content.append("\n")
    content.append("  Updated:   ", style="bold")
    content.append(state.updated_at.strftime("%Y-%m-%d %H:%M:%S"), style=BRAND["dim"])
    if state.error:
        content.append("\n")
        content.append("  Error:     ", style="bold")
        content.append(state.error[:200], style=BRAND["red"])

    return Panel(
        content,
        title=title or f"[bold]{state.project_id or 'loop'}[/bold]",
        border_style=_border_style(state),
    )


def _border_style(state: LoopState) -> str:
    if state.status == LoopStatus.CONVERGED:
        return BRAND["green"]
    if state.exhausted:
        return BRAND["amber"]
    if state.status in (LoopStatus.CIRCUIT_BREAKER, LoopStatus.ABORTED):
        return BRAND["red"]
    return BRAND["ember"]


def render_outcome(
    console: Console,
    state: LoopState,
    *,
    duration: float = 0.0,
    cost: float = 0.0,
    run_id: str = "",
) -> None:
    """Print the post-run summary: state panel, rounds and open findings."""
    console.print()
    console.print(state_panel(state, title="[bold]Crucible[/bold]"))
    footer = Text()
    footer.append(f"  Duration: {duration:.1f}s", style="bold")
    footer.append(f"    Cost: ${cost:.4f}", style=BRAND["gold"])
    if run_id:
        footer.append(f"    Run: {run_id[:8]}", style=BRAND["dim"])
    console.print(footer)
    if state.rounds:
        console.print(rounds_table(state))
    if state.open_blocking:
        console.print(findings_table(state.open_blocking, title="Open blocking findings"))


# ── Live progress ─────────────────────────────────────────────────


class LoopProgressPrinter:
    """Prints one line per loop milestone as events arrive.

    ``create_listener`` returns a sync callback for LoopEventEmitter.
    Channel traffic is only shown when ``show_channel`` is set.
    """

    def __init__(self, console: Console, show_channel: bool = False) -> None:
        self._console = console
        self._show_channel = show_channel
        self._start = time.monotonic()

    def create_listener(self):
        def listener(event: LoopEvent) -> None:
            line = self._format(event)
            if line is not None:
                elapsed = time.monotonic() - self._start
                text = Text(f"{elapsed:7.1f}s  ", style=BRAND["dim"])
                text.append_text(line)
                self._console.print(text)

        return listener

    def _format(self, event: LoopEvent) -> Text | None:
        d = event.data
        etype = event.type

        if etype == EventType.LOOP_STARTED:
            verb = "Resuming" if d.get("resumed") else "Starting"
            return Text(
                f"◆ {verb} loop for {d.get('project_id', '')} "
                f"(max {d.get('max_rounds')} rounds)",
                style=f"bold {BRAND['ember']}",
            )
        if etype == EventType.ROUND_STARTED:
            return Text(
                f"── Round {d.get('round')}/{d.get('max_rounds')} ──", style="bold",
            )
        if etype == EventType.CRITIQUE_STARTED:
            suffix = f" (attempt {d['attempt']})" if d.get("attempt", 1) > 1 else ""
            return Text(f"▸ Critique pass{suffix}")
        if etype == EventType.CRITIQUE_COMPLETED:
            text = Text(f"✓ Critique: {d.get('findings', 0)} findings  ", style=BRAND["green"])
            for severity in Severity:
                count = d.get(severity.value.lower(), 0)
                text.append(f"{count} {severity.value} ", style=_SEVERITY_STYLE[severity])
            return text
        if etype in (EventType.CRITIQUE_FAILED, EventType.REMEDIATION_FAILED):
            phase = "Critique" if etype == EventType.CRITIQUE_FAILED else "Remediation"
            return Text(
                f"✗ {phase} failed ({d.get('consecutive')} consecutive): {d.get('error', '')}",
                style=BRAND["red"],
            )
        if etype == EventType.RETRY_TRIGGERED:
            return Text(
                f"↻ Retrying {d.get('phase')} (attempt {d.get('attempt')})",
                style=BRAND["amber"],
            )
        if etype == EventType.REMEDIATION_STARTED:
            return Text(f"▸ Remediation pass on {d.get('findings', 0)} findings")
        if etype == EventType.REMEDIATION_COMPLETED:
            return Text(
                f"✓ Remediation: {d.get('fixed', 0)} fixed, {d.get('rejected', 0)} rejected, "
                f"{d.get('unresolved', 0)} unresolved",
                style=BRAND["green"],
            )
        if etype == EventType.REJECTIONS_RESOLVED:
            return Text(
                f"  Rejections: {d.get('accepted', 0)} accepted, "
                f"{d.get('overruled', 0)} overruled",
                style=BRAND["dim"],
            )
        if etype == EventType.LOOP_CONVERGED:
            return Text(f"✓ Converged in round {d.get('round')}", style=f"bold {BRAND['green']}")
        if etype == EventType.LOOP_EXHAUSTED:
            return Text(
                f"■ Round budget exhausted with {d.get('blocking', 0)} blocking findings",
                style=f"bold {BRAND['amber']}",
            )
        if etype == EventType.CIRCUIT_BREAKER:
            return Text(
                f"✗ Circuit breaker: {d.get('reason', '')}", style=f"bold {BRAND['red']}",
            )
        if etype == EventType.ROUND_ABANDONED:
            return Text(f"✗ Round {d.get('round')} abandoned", style=BRAND["red"])
        if etype == EventType.LOOP_ABORTED:
            return Text("✗ Loop aborted", style=f"bold {BRAND['red']}")
        if etype == EventType.CHANNEL_EVENT and self._show_channel:
            kind = (d.get("event") or {}).get("kind", "")
            return Text(f"  [{d.get('mode', '')}] {kind}", style=BRAND["dim"])
        if etype == EventType.ERROR:
            return Text(f"✗ {d.get('message', '')}", style=BRAND["red"])
        return None
