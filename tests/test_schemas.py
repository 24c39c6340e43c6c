"""Tests for the finding, loop state, config and run history schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from crucible.schemas.config import ChannelConfig, CrucibleConfig, InputFormat, LoopConfig
from crucible.schemas.findings import (
    Category,
    Finding,
    Rejection,
    Severity,
    blocking,
    count_by_severity,
)
from crucible.schemas.loop import LoopState, LoopStatus, RoundOutcome, RoundRecord

# ── Factories ──────────────────────────────────────────────────────


def _make_finding(severity: str = "HIGH", **overrides) -> Finding:
    defaults = {
        "severity": severity,
        "category": "security",
        "rule": "sql-injection",
        "file": "app/db.py",
        "line": 42,
        "message": "Query built from user input",
        "suggestion": "Use bound parameters",
    }
    defaults.update(overrides)
    return Finding(**defaults)


# ══════════════════════════════════════════════════════════════════
# Finding
# ══════════════════════════════════════════════════════════════════


class TestFinding:
    def test_severity_is_normalised(self):
        assert _make_finding("high").severity == Severity.HIGH

    def test_category_is_normalised(self):
        finding = _make_finding(category="Error_Handling")
        assert finding.category == Category.ERROR_HANDLING

    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError):
            _make_finding(category="performance")

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValidationError):
            _make_finding("CRITICAL")

    @pytest.mark.parametrize("raw,expected", [("42", 42), ("42-50", 42), ("L7", 7), ("", 0), (None, 0)])
    def test_line_coercion(self, raw, expected):
        assert _make_finding(line=raw).line == expected

    def test_blocking_severities(self):
        assert _make_finding("HIGH").is_blocking
        assert _make_finding("MEDIUM").is_blocking
        assert not _make_finding("LOW").is_blocking

    def test_ref_includes_rule_location_and_message(self):
        ref = _make_finding().ref
        assert "sql-injection" in ref
        assert "app/db.py:42" in ref
        assert "Query built from user input" in ref

    def test_ref_falls_back_to_category(self):
        ref = _make_finding(rule="", file="").ref
        assert ref.startswith("security @ -")

    def test_findings_are_frozen(self):
        finding = _make_finding()
        with pytest.raises(ValidationError):
            finding.message = "changed"

    def test_same_issue_by_line(self):
        a = _make_finding(message="one wording")
        b = _make_finding(message="another wording")
        assert a.same_issue(b)

    def test_same_issue_by_message_after_line_drift(self):
        a = _make_finding(line=42)
        b = _make_finding(line=57, message="  query BUILT from user   input ")
        assert a.same_issue(b)

    def test_different_file_is_different_issue(self):
        assert not _make_finding().same_issue(_make_finding(file="app/other.py"))

    def test_different_rule_is_different_issue(self):
        assert not _make_finding().same_issue(_make_finding(rule="xss"))

    def test_count_by_severity_includes_zeros(self):
        counts = count_by_severity([_make_finding("HIGH"), _make_finding("HIGH")])
        assert counts == {Severity.HIGH: 2, Severity.MEDIUM: 0, Severity.LOW: 0}

    def test_blocking_filter_preserves_order(self):
        findings = [
            _make_finding("LOW", line=1),
            _make_finding("MEDIUM", line=2),
            _make_finding("HIGH", line=3),
        ]
        assert [f.line for f in blocking(findings)] == [2, 3]


class TestRejection:
    def test_accepts_camel_case_alias(self):
        rejection = Rejection.model_validate(
            {"finding": "x", "reason": "by contract", "codexAccepted": True}
        )
        assert rejection.codex_accepted is True

    def test_defaults_to_unresolved(self):
        assert Rejection(finding="x", reason="y").codex_accepted is None

    def test_dumps_camel_case(self):
        doc = Rejection(finding="x", reason="y").model_dump(by_alias=True)
        assert doc == {"finding": "x", "reason": "y", "codexAccepted": None}


# ══════════════════════════════════════════════════════════════════
# RoundRecord / LoopState
# ══════════════════════════════════════════════════════════════════


class TestRoundRecord:
    def test_conservation_enforced(self):
        with pytest.raises(ValidationError, match="fixed"):
            RoundRecord(round=1, codex_findings=3, fixed=1, remaining=1)

    def test_rejected_count_must_match_reasons(self):
        with pytest.raises(ValidationError, match="rejected count"):
            RoundRecord(round=1, codex_findings=2, fixed=0, remaining=2, rejected=1)

    def test_rejected_cannot_exceed_remaining(self):
        reasons = [Rejection(finding=f"f{i}", reason="r") for i in range(2)]
        with pytest.raises(ValidationError, match="exceeds"):
            RoundRecord(
                round=1, codex_findings=2, fixed=1, remaining=1,
                rejected=2, rejection_reasons=reasons,
            )

    def test_unchanged_keeps_every_finding(self):
        entering = [_make_finding("HIGH"), _make_finding("LOW", line=3)]
        record = RoundRecord.unchanged(2, entering, RoundOutcome.FAILED)
        assert record.codex_findings == 2
        assert record.remaining == 2
        assert record.fixed == 0
        assert record.blocking == 1
        assert record.outcome == RoundOutcome.FAILED

    def test_camel_case_document(self):
        doc = RoundRecord(round=1, codex_findings=2, fixed=2).model_dump(by_alias=True)
        assert doc["codexFindings"] == 2
        assert doc["rejectionReasons"] == []


class TestLoopState:
    def test_defaults(self):
        state = LoopState()
        assert state.round == 0
        assert state.max_rounds == 3
        assert state.status == LoopStatus.IN_PROGRESS
        assert not state.is_terminal

    def test_exhausted_is_distinct_from_converged(self):
        finding = _make_finding("HIGH")
        state = LoopState(
            round=3, max_rounds=3, open_findings=[finding],
            rounds=[RoundRecord.unchanged(3, [finding], RoundOutcome.EXHAUSTED)],
        )
        assert state.exhausted
        assert state.status == LoopStatus.IN_PROGRESS
        assert state.is_terminal

    def test_not_exhausted_mid_loop(self):
        finding = _make_finding("HIGH")
        state = LoopState(
            round=2, max_rounds=3, open_findings=[finding],
            rounds=[RoundRecord.unchanged(2, [finding], RoundOutcome.FAILED)],
        )
        assert not state.exhausted

    def test_terminal_statuses(self):
        for status in (LoopStatus.CONVERGED, LoopStatus.CIRCUIT_BREAKER, LoopStatus.ABORTED):
            assert LoopState(status=status).is_terminal

    def test_open_blocking(self):
        state = LoopState(open_findings=[_make_finding("LOW"), _make_finding("MEDIUM")])
        assert [f.severity for f in state.open_blocking] == [Severity.MEDIUM]

    def test_document_round_trips(self):
        state = LoopState(project_id="demo", round=1)
        state.rounds.append(RoundRecord(round=1, codex_findings=1, fixed=1))
        doc = state.to_document()
        assert doc["projectId"] == "demo"
        assert doc["maxRounds"] == 3
        assert doc["status"] == "in_progress"
        restored = LoopState.model_validate(doc)
        assert restored.rounds[0].fixed == 1

    def test_touch_advances_updated_at(self):
        state = LoopState()
        before = state.updated_at
        state.touch()
        assert state.updated_at >= before


# ══════════════════════════════════════════════════════════════════
# Config
# ══════════════════════════════════════════════════════════════════


class TestConfigSchemas:
    def test_loop_defaults(self):
        config = LoopConfig()
        assert config.max_rounds == 3
        assert config.critique_retries == 1
        assert config.remediation_retries == 1

    def test_max_rounds_must_be_positive(self):
        with pytest.raises(ValidationError):
            LoopConfig(max_rounds=0)

    def test_channel_requires_command(self):
        with pytest.raises(ValidationError):
            ChannelConfig(command=[])

    def test_channel_defaults(self):
        config = ChannelConfig(command=["agent"])
        assert config.input_format == InputFormat.TEXT
        assert "CLAUDECODE" in config.unset_env

    def test_crucible_defaults(self):
        config = CrucibleConfig()
        assert config.critique.command[0] == "codex"
        assert config.remediation.command[0] == "claude"
        assert config.remediation.resume_flag == "--resume"
