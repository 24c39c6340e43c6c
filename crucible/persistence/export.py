"""Run export formatters.

Provides JSON and Markdown export functions for run records.
"""

from __future__ import annotations

import json

from crucible.schemas.findings import count_by_severity
from crucible.schemas.loop import LoopStatus
from crucible.schemas.runs import RunRecord


def export_json(record: RunRecord) -> str:
    """Export a run record as a formatted JSON string.

    The embedded loop state uses the same camelCase keys as
    adversarial-state.json.
    """
    payload = record.model_dump(mode="json", exclude={"state"})
    payload["state"] = record.state.to_document()
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _status_label(record: RunRecord) -> str:
    state = record.state
    if state.exhausted:
        return "Exhausted (not converged)"
    return {
        LoopStatus.CONVERGED: "Converged",
        LoopStatus.CIRCUIT_BREAKER: "Circuit breaker",
        LoopStatus.ABORTED: "Aborted",
        LoopStatus.IN_PROGRESS: "In progress",
    }[state.status]


def export_markdown(record: RunRecord) -> str:
    """Export a run record as a human-readable Markdown report.

    Sections: run metadata, a per-round table, the rejection audit
    (every rejection and whether the next critique accepted it), and the
    findings still open at the end of the run.
    """
    state = record.state
    lines: list[str] = []

    lines.append(f"# Loop Report: {record.run_id}")
    lines.append("")

    lines.append("## Metadata")
    lines.append("")
    lines.append(f"- **Project:** {record.project_id or '-'}")
    lines.append(f"- **Started:** {record.started_at.isoformat()}")
    if record.completed_at:
        lines.append(f"- **Completed:** {record.completed_at.isoformat()}")
    lines.append(f"- **Duration:** {record.duration_seconds:.1f}s")
    lines.append(f"- **Total Cost:** ${record.total_cost:.4f}")
    lines.append(f"- **Rounds:** {state.round} of {state.max_rounds}")
    lines.append(f"- **Status:** {_status_label(record)}")
    if state.error:
        lines.append(f"- **Last Error:** {state.error}")
    lines.append("")

    if state.rounds:
        lines.append("## Rounds")
        lines.append("")
        lines.append("| Round | Outcome | Findings | Blocking | Fixed | Rejected | Remaining |")
        lines.append("|-------|---------|----------|----------|-------|----------|-----------|")
        for r in state.rounds:
            lines.append(
                f"| {r.round} | {r.outcome.value} | {r.codex_findings} | {r.blocking} | "
                f"{r.fixed} | {r.rejected} | {r.remaining} |"
            )
        lines.append("")

    rejections = [(r.round, rej) for r in state.rounds for rej in r.rejection_reasons]
    lines.append("## Rejection Audit")
    lines.append("")
    if not rejections:
        lines.append("No findings were rejected.")
    else:
        accepted = sum(1 for _, rej in rejections if rej.codex_accepted is True)
        overruled = sum(1 for _, rej in rejections if rej.codex_accepted is False)
        pending = len(rejections) - accepted - overruled
        lines.append(
            f"{len(rejections)} rejections: {accepted} accepted by the reviewer, "
            f"{overruled} overruled, {pending} never re-reviewed."
        )
        lines.append("")
        for round_number, rej in rejections:
            verdict = {True: "accepted", False: "overruled", None: "pending"}[rej.codex_accepted]
            lines.append(f"- Round {round_number} ({verdict}): {rej.finding}")
            lines.append(f"  - Reason: {rej.reason}")
    lines.append("")

    if state.open_findings:
        counts = count_by_severity(state.open_findings)
        lines.append("## Open Findings")
        lines.append("")
        lines.append(", ".join(f"{count} {severity}" for severity, count in counts.items()))
        lines.append("")
        for finding in state.open_findings:
            lines.append(f"- [{finding.severity}] [{finding.category}] {finding.ref}")
            if finding.suggestion:
                lines.append(f"  - Fix: {finding.suggestion}")
        lines.append("")

    lines.append(
        f"*{len(state.cumulative_findings)} findings reported across all rounds.*"
    )
    lines.append("")
    lines.append("---")
    lines.append("*Generated by Crucible*")
    lines.append("")

    return "\n".join(lines)
