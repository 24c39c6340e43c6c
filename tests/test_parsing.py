"""Tests for critique and remediation output parsing."""

from __future__ import annotations

import json

import pytest

from crucible.errors import CritiqueMalformed
from crucible.review.parsing import (
    NO_ISSUES_MARKER,
    ResolutionStatus,
    finding_from_tool_input,
    normalise_finding_id,
    parse_findings,
    parse_resolutions,
    resolution_from_tool_input,
)
from crucible.schemas.findings import Category, Severity

_BLOCKS = """Reviewed 3 files.

---
SEVERITY: HIGH
CATEGORY: security
RULE: backend/sql
FILE: app/db.py
LINE: 42
MESSAGE: Query built by string concatenation
SUGGESTION: Use bound parameters
---
SEVERITY: LOW
CATEGORY: style
FILE: app/db.py
LINE: 7
MESSAGE: Unused import
---
"""


# ══════════════════════════════════════════════════════════════════
# Critique output
# ══════════════════════════════════════════════════════════════════


class TestParseFindings:
    def test_no_issues_marker(self):
        assert parse_findings(f"  {NO_ISSUES_MARKER}\n") == []

    def test_marker_inside_prose_is_not_clean(self):
        with pytest.raises(CritiqueMalformed):
            parse_findings(f"I could not decide whether {NO_ISSUES_MARKER} applies here.")

    @pytest.mark.parametrize("text", ["", "   ", "ok", "{"])
    def test_empty_or_truncated_output(self, text):
        with pytest.raises(CritiqueMalformed):
            parse_findings(text)

    def test_delimited_blocks(self):
        findings = parse_findings(_BLOCKS)
        assert len(findings) == 2
        first = findings[0]
        assert first.severity == Severity.HIGH
        assert first.category == Category.SECURITY
        assert first.rule == "backend/sql"
        assert first.file == "app/db.py"
        assert first.line == 42
        assert first.suggestion == "Use bound parameters"
        assert findings[1].severity == Severity.LOW

    def test_block_with_invalid_category_is_skipped(self):
        text = _BLOCKS.replace("CATEGORY: style", "CATEGORY: vibes")
        findings = parse_findings(text)
        assert [f.severity for f in findings] == [Severity.HIGH]

    def test_json_document(self):
        text = json.dumps({"findings": [{
            "severity": "medium", "category": "logic", "file": "a.py", "line": "3",
            "message": "Off by one in pagination",
        }]})
        findings = parse_findings(text)
        assert findings[0].severity == Severity.MEDIUM
        assert findings[0].line == 3

    def test_fenced_json_empty_list_is_clean(self):
        text = 'Review complete.\n```json\n{"findings": []}\n```\n'
        assert parse_findings(text) == []

    def test_numbered_paragraph_fallback(self):
        text = (
            "Summary of issues:\n"
            "1. **HIGH** — Missing error handling around `app/api.py:17` network call\n"
            "2. **LOW** - Naming is inconsistent in the style of helpers module\n"
        )
        findings = parse_findings(text)
        assert [f.severity for f in findings] == [Severity.HIGH, Severity.LOW]
        assert findings[0].file == "app/api.py"
        assert findings[0].line == 17
        assert findings[1].category == Category.STYLE

    def test_unparseable_prose_raises(self):
        with pytest.raises(CritiqueMalformed) as exc_info:
            parse_findings("The code looks mostly fine but I have some concerns.")
        assert "concerns" in exc_info.value.raw

    def test_tool_input(self):
        finding = finding_from_tool_input({
            "severity": "HIGH", "category": "security", "message": "Secret in repo",
        })
        assert finding is not None
        assert finding.is_blocking

    def test_malformed_tool_input(self):
        assert finding_from_tool_input({"severity": "HIGH"}) is None


# ══════════════════════════════════════════════════════════════════
# Remediation output
# ══════════════════════════════════════════════════════════════════


class TestParseResolutions:
    @pytest.mark.parametrize("raw,expected", [(1, "F1"), ("f2", "F2"), (" F3 ", "F3"), ("7", "F7")])
    def test_normalise_finding_id(self, raw, expected):
        assert normalise_finding_id(raw) == expected

    def test_json_report(self):
        text = "Done.\n```json\n" + json.dumps({"resolutions": [
            {"id": "F1", "status": "fixed", "reason": ""},
            {"id": 2, "status": "Rejected", "reason": "intentional"},
        ]}) + "\n```"
        resolutions = parse_resolutions(text)
        assert [(r.id, r.status) for r in resolutions] == [
            ("F1", ResolutionStatus.FIXED),
            ("F2", ResolutionStatus.REJECTED),
        ]
        assert resolutions[1].reason == "intentional"

    def test_line_report(self):
        text = (
            "Applied the changes.\n"
            "FIXED: F1\n"
            "- **REJECTED**: F2 — the value is validated upstream\n"
            "UNRESOLVED: F3\n"
        )
        resolutions = parse_resolutions(text)
        assert [r.status for r in resolutions] == [
            ResolutionStatus.FIXED, ResolutionStatus.REJECTED, ResolutionStatus.UNRESOLVED,
        ]
        assert resolutions[1].reason == "the value is validated upstream"

    def test_no_report(self):
        assert parse_resolutions("I edited some files.") == []

    def test_tool_input_with_null_reason(self):
        resolution = resolution_from_tool_input({"id": "f1", "status": "FIXED", "reason": None})
        assert resolution is not None
        assert resolution.id == "F1"
        assert resolution.reason == ""

    def test_tool_input_with_bad_status(self):
        assert resolution_from_tool_input({"id": "F1", "status": "ignored"}) is None
