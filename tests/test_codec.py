"""Tests for the agent CLI stream decoder (Claude stream-json and Codex exec JSONL)."""

from __future__ import annotations

import json

import pytest

from crucible.channel.codec import StreamDecoder
from crucible.schemas.events import (
    ErrorEvent,
    RawEvent,
    ResultEvent,
    SessionEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
)


def _line(record: dict) -> str:
    return json.dumps(record) + "\n"


# ══════════════════════════════════════════════════════════════════
# Generic behaviour
# ══════════════════════════════════════════════════════════════════


class TestDecoderBasics:
    def test_blank_line_yields_nothing(self):
        assert StreamDecoder().decode("   \n") == []

    def test_non_json_line_is_raw(self):
        events = StreamDecoder().decode("Reading prompt from stdin...\n")
        assert events == [RawEvent(line="Reading prompt from stdin...")]

    def test_json_array_is_raw(self):
        events = StreamDecoder().decode("[1, 2]")
        assert isinstance(events[0], RawEvent)

    def test_unknown_type_is_raw(self):
        events = StreamDecoder().decode(_line({"type": "telemetry", "x": 1}))
        assert len(events) == 1
        assert isinstance(events[0], RawEvent)

    def test_bookkeeping_records_are_dropped(self):
        decoder = StreamDecoder()
        for record_type in ("message_start", "message_stop", "ping", "turn.started"):
            assert decoder.decode(_line({"type": record_type})) == []

    @pytest.mark.parametrize(
        "record",
        [
            {"type": "result", "duration_ms": -5},
            {"type": "result", "total_cost_usd": "n/a"},
            {"type": "content_block_start", "index": 0, "content_block": "text"},
            {"type": "item.completed", "item": ["agent_message"]},
        ],
    )
    def test_wrongly_shaped_record_is_raw(self, record):
        line = json.dumps(record)
        assert StreamDecoder().decode(line + "\n") == [RawEvent(line=line)]

    def test_decoder_keeps_working_after_bad_record(self):
        decoder = StreamDecoder()
        decoder.decode(_line({"type": "result", "total_cost_usd": "n/a"}))
        events = decoder.decode(_line({"type": "result", "total_cost_usd": 0.5}))
        assert events == [ResultEvent(cost_usd=0.5)]


# ══════════════════════════════════════════════════════════════════
# Claude stream-json
# ══════════════════════════════════════════════════════════════════


class TestClaudeDialect:
    def test_system_init_reports_session(self):
        events = StreamDecoder().decode(_line({
            "type": "system", "subtype": "init", "session_id": "abc-123",
        }))
        assert events == [SessionEvent(session_id="abc-123")]

    def test_assistant_message_blocks(self):
        events = StreamDecoder().decode(_line({
            "type": "assistant",
            "message": {"content": [
                {"type": "text", "text": "Fixing F1"},
                {"type": "tool_use", "id": "tu_1", "name": "Edit", "input": {"path": "a.py"}},
            ]},
        }))
        assert events[0] == TextEvent(text="Fixing F1")
        assert isinstance(events[1], ToolUseEvent)
        assert events[1].tool_id == "tu_1"
        assert events[1].input == {"path": "a.py"}

    def test_user_tool_result_is_flattened(self):
        events = StreamDecoder().decode(_line({
            "type": "user",
            "message": {"content": [{
                "type": "tool_result", "tool_use_id": "tu_1",
                "content": [{"type": "text", "text": "ok"}], "is_error": False,
            }]},
        }))
        assert events == [ToolResultEvent(tool_use_id="tu_1", content="ok", is_error=False)]

    def test_partial_tool_input_is_assembled(self):
        decoder = StreamDecoder()
        assert decoder.decode(_line({
            "type": "content_block_start", "index": 1,
            "content_block": {"type": "tool_use", "id": "tu_9", "name": "report_resolution"},
        })) == []
        for fragment in ('{"id": "F1", ', '"status": "fixed"}'):
            assert decoder.decode(_line({
                "type": "content_block_delta", "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": fragment},
            })) == []
        events = decoder.decode(_line({"type": "content_block_stop", "index": 1}))
        assert events == [ToolUseEvent(
            tool_id="tu_9", name="report_resolution", input={"id": "F1", "status": "fixed"},
        )]

    def test_text_delta_inside_stream_event_wrapper(self):
        events = StreamDecoder().decode(_line({
            "type": "stream_event",
            "event": {"type": "content_block_delta", "index": 0,
                      "delta": {"type": "text_delta", "text": "hel"}},
        }))
        assert events == [TextEvent(text="hel")]

    def test_block_stop_without_pending_tool(self):
        assert StreamDecoder().decode(_line({"type": "content_block_stop", "index": 0})) == []

    def test_result_record(self):
        events = StreamDecoder().decode(_line({
            "type": "result", "subtype": "success", "is_error": False,
            "result": "done", "session_id": "s-1", "duration_ms": 1200,
            "num_turns": 4, "total_cost_usd": 0.25, "usage": {"input_tokens": 10},
        }))
        assert len(events) == 1
        result = events[0]
        assert isinstance(result, ResultEvent)
        assert result.text == "done"
        assert result.session_id == "s-1"
        assert result.cost_usd == 0.25
        assert result.num_turns == 4
        assert result.usage == {"input_tokens": 10}

    def test_result_with_legacy_cost_field(self):
        events = StreamDecoder().decode(_line({"type": "result", "cost_usd": 0.1}))
        assert events[0].cost_usd == 0.1

    def test_result_with_nested_content(self):
        events = StreamDecoder().decode(_line({
            "type": "result",
            "result": {"content": [{"type": "text", "text": "NO_ISSUES_FOUND"}]},
        }))
        assert events[0] == TextEvent(text="NO_ISSUES_FOUND")
        assert isinstance(events[1], ResultEvent)

    def test_error_record(self):
        events = StreamDecoder().decode(_line({
            "type": "error", "error": {"message": "overloaded"},
        }))
        assert events == [ErrorEvent(message="overloaded")]


# ══════════════════════════════════════════════════════════════════
# Codex exec JSONL
# ══════════════════════════════════════════════════════════════════


class TestCodexDialect:
    def test_thread_started_reports_session(self):
        events = StreamDecoder().decode(_line({"type": "thread.started", "thread_id": "th_1"}))
        assert events == [SessionEvent(session_id="th_1")]

    def test_agent_message(self):
        events = StreamDecoder().decode(_line({
            "type": "item.completed",
            "item": {"id": "item_3", "type": "agent_message", "text": "NO_ISSUES_FOUND"},
        }))
        assert events == [TextEvent(text="NO_ISSUES_FOUND")]

    def test_command_execution(self):
        events = StreamDecoder().decode(_line({
            "type": "item.completed",
            "item": {"id": "item_1", "type": "command_execution", "command": "git diff",
                     "aggregated_output": "diff --git", "exit_code": 1},
        }))
        assert events[0] == ToolUseEvent(tool_id="item_1", name="shell", input={"command": "git diff"})
        assert events[1].is_error is True

    def test_mcp_tool_call_with_string_arguments(self):
        events = StreamDecoder().decode(_line({
            "type": "item.completed",
            "item": {"id": "item_2", "type": "mcp_tool_call", "tool": "report_finding",
                     "arguments": json.dumps({"severity": "HIGH"}), "status": "completed"},
        }))
        assert events[0].name == "report_finding"
        assert events[0].input == {"severity": "HIGH"}
        assert events[1].is_error is False

    def test_reasoning_items_are_dropped(self):
        events = StreamDecoder().decode(_line({
            "type": "item.completed", "item": {"id": "i", "type": "reasoning", "text": "hm"},
        }))
        assert events == []

    def test_turn_completed_is_result(self):
        events = StreamDecoder().decode(_line({
            "type": "turn.completed", "usage": {"input_tokens": 5, "output_tokens": 2},
        }))
        assert isinstance(events[0], ResultEvent)
        assert events[0].usage["output_tokens"] == 2

    def test_turn_failed_is_error(self):
        events = StreamDecoder().decode(_line({
            "type": "turn.failed", "error": {"message": "rate limited"},
        }))
        assert events == [ErrorEvent(message="rate limited")]
