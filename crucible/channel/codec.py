"""Line decoder for the JSON streams emitted by agent CLIs.

Two dialects are recognised and may be mixed on one stream:

- Claude ``--output-format stream-json``: ``system``, ``assistant``,
  ``user``, ``result`` and ``error`` records, plus partial-message
  ``content_block_*`` records (bare or wrapped in ``stream_event``).
- Codex ``exec --json``: ``thread.started``, ``item.completed``,
  ``turn.completed``, ``turn.failed`` and ``error`` records.

Decoding never raises. A line that does not decode into an event, including
a known record whose values have the wrong shape, comes back as RawEvent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from crucible.schemas.events import (
    ChannelEvent,
    ErrorEvent,
    RawEvent,
    ResultEvent,
    SessionEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
)

logger = logging.getLogger(__name__)

# Records that carry no information the loop consumes
_BOOKKEEPING = frozenset({
    "message_start",
    "message_delta",
    "message_stop",
    "ping",
    "turn.started",
    "item.started",
    "item.updated",
})


@dataclass
class _PendingToolUse:
    """A tool_use block whose input JSON is still streaming in."""

    tool_id: str
    name: str
    input_json: list[str] = field(default_factory=list)


def _flatten_content(content: Any) -> str:
    """Collapse a tool_result ``content`` (string or block list) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(str(block.get("text", "")))
            else:
                parts.append(str(block))
        return "".join(parts)
    return json.dumps(content)


def _as_dict(value: Any) -> dict[str, Any]:
    """Coerce tool arguments (dict or JSON string) into a dict."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {"raw": value}
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    return {}


def _error_message(record: dict[str, Any], default: str) -> str:
    error = record.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    if record.get("message"):
        return str(record["message"])
    return default


class StreamDecoder:
    """Stateful decoder for one process's stdout.

    State is limited to tool_use blocks whose input arrives as a sequence
    of ``input_json_delta`` fragments; a decoder must not be shared
    between processes.
    """

    def __init__(self) -> None:
        self._pending: dict[int, _PendingToolUse] = {}

    def decode(self, line: str) -> list[ChannelEvent]:
        """Decode one output line into zero or more events."""
        stripped = line.strip()
        if not stripped:
            return []

        try:
            record = json.loads(stripped)
        except json.JSONDecodeError:
            return [RawEvent(line=stripped)]
        if not isinstance(record, dict):
            return [RawEvent(line=stripped)]

        record_type = record.get("type")
        if record_type == "stream_event" and isinstance(record.get("event"), dict):
            record = record["event"]
            record_type = record.get("type")

        if record_type in _BOOKKEEPING:
            return []

        handler = self._HANDLERS.get(record_type)
        if handler is None:
            logger.debug("Unknown stream record type %r", record_type)
            return [RawEvent(line=stripped)]
        try:
            return handler(self, record)
        except (ValidationError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Malformed %r record passed through as raw: %s", record_type, exc)
            return [RawEvent(line=stripped)]

    # ── Claude stream-json ───────────────────────────────────────

    def _system(self, record: dict[str, Any]) -> list[ChannelEvent]:
        session_id = record.get("session_id")
        if session_id:
            return [SessionEvent(session_id=str(session_id))]
        return []

    def _message_blocks(self, record: dict[str, Any]) -> list[ChannelEvent]:
        message = record.get("message") or {}
        blocks = message.get("content") if isinstance(message, dict) else None
        if isinstance(blocks, str):
            return [TextEvent(text=blocks)] if blocks else []
        events: list[ChannelEvent] = []
        for block in blocks or []:
            if not isinstance(block, dict):
                continue
            events.extend(self._content_block(block))
        return events

    def _content_block(self, block: dict[str, Any]) -> list[ChannelEvent]:
        block_type = block.get("type")
        if block_type == "text" and block.get("text"):
            return [TextEvent(text=str(block["text"]))]
        if block_type == "tool_use":
            return [ToolUseEvent(
                tool_id=str(block.get("id", "")),
                name=str(block.get("name", "")),
                input=_as_dict(block.get("input")),
            )]
        if block_type == "tool_result":
            return [ToolResultEvent(
                tool_use_id=str(block.get("tool_use_id", "")),
                content=_flatten_content(block.get("content")),
                is_error=bool(block.get("is_error", False)),
            )]
        return []

    def _block_start(self, record: dict[str, Any]) -> list[ChannelEvent]:
        block = record.get("content_block") or {}
        index = int(record.get("index") or 0)
        if block.get("type") == "tool_use":
            self._pending[index] = _PendingToolUse(
                tool_id=str(block.get("id", "")), name=str(block.get("name", "")),
            )
            return []
        if block.get("type") == "text" and block.get("text"):
            return [TextEvent(text=str(block["text"]))]
        return []

    def _block_delta(self, record: dict[str, Any]) -> list[ChannelEvent]:
        delta = record.get("delta") or {}
        if delta.get("type") == "text_delta" and delta.get("text"):
            return [TextEvent(text=str(delta["text"]))]
        if delta.get("type") == "input_json_delta":
            pending = self._pending.get(int(record.get("index") or 0))
            if pending is not None:
                pending.input_json.append(str(delta.get("partial_json", "")))
        return []

    def _block_stop(self, record: dict[str, Any]) -> list[ChannelEvent]:
        pending = self._pending.pop(int(record.get("index") or 0), None)
        if pending is None:
            return []
        payload = "".join(pending.input_json)
        tool_input: dict[str, Any] = {}
        if payload:
            try:
                tool_input = _as_dict(json.loads(payload))
            except json.JSONDecodeError:
                logger.warning(
                    "Malformed streamed input for tool %s (%d chars)",
                    pending.name, len(payload),
                )
        return [ToolUseEvent(tool_id=pending.tool_id, name=pending.name, input=tool_input)]

    def _result(self, record: dict[str, Any]) -> list[ChannelEvent]:
        events: list[ChannelEvent] = []
        result = record.get("result")
        text = ""
        if isinstance(result, str):
            text = result
        elif isinstance(result, dict):
            # Older CLIs nest the final message's content blocks here
            for block in result.get("content") or []:
                if isinstance(block, dict):
                    events.extend(self._content_block(block))
        events.append(ResultEvent(
            text=text,
            is_error=bool(record.get("is_error", False)),
            session_id=str(record.get("session_id") or ""),
            duration_ms=int(record.get("duration_ms") or 0),
            num_turns=int(record.get("num_turns") or 0),
            cost_usd=float(record.get("total_cost_usd") or record.get("cost_usd") or 0.0),
            usage=record.get("usage") or {},
        ))
        return events

    def _error(self, record: dict[str, Any]) -> list[ChannelEvent]:
        return [ErrorEvent(message=_error_message(record, "Unknown CLI error"))]

    # ── Codex exec JSONL ─────────────────────────────────────────

    def _thread_started(self, record: dict[str, Any]) -> list[ChannelEvent]:
        thread_id = record.get("thread_id")
        if thread_id:
            return [SessionEvent(session_id=str(thread_id))]
        return []

    def _item_completed(self, record: dict[str, Any]) -> list[ChannelEvent]:
        item = record.get("item") or {}
        item_type = item.get("type") or item.get("item_type")
        item_id = str(item.get("id", ""))

        if item_type in ("agent_message", "assistant_message"):
            text = item.get("text")
            return [TextEvent(text=str(text))] if text else []

        if item_type == "command_execution":
            exit_code = item.get("exit_code")
            return [
                ToolUseEvent(
                    tool_id=item_id, name="shell",
                    input={"command": item.get("command", "")},
                ),
                ToolResultEvent(
                    tool_use_id=item_id,
                    content=_flatten_content(item.get("aggregated_output")),
                    is_error=exit_code not in (None, 0),
                ),
            ]

        if item_type == "mcp_tool_call":
            result = item.get("result")
            error = item.get("error")
            return [
                ToolUseEvent(
                    tool_id=item_id,
                    name=str(item.get("tool", "")),
                    input=_as_dict(item.get("arguments")),
                ),
                ToolResultEvent(
                    tool_use_id=item_id,
                    content=_flatten_content(
                        result.get("content") if isinstance(result, dict) else result
                    ),
                    is_error=bool(error) or item.get("status") == "failed",
                ),
            ]

        if item_type == "error":
            return [ErrorEvent(message=str(item.get("message", "Unknown item error")))]

        # reasoning, file_change, todo_list, web_search ...
        return []

    def _turn_completed(self, record: dict[str, Any]) -> list[ChannelEvent]:
        return [ResultEvent(usage=record.get("usage") or {})]

    def _turn_failed(self, record: dict[str, Any]) -> list[ChannelEvent]:
        return [ErrorEvent(message=_error_message(record, "Turn failed"))]

    _HANDLERS = {
        "system": _system,
        "assistant": _message_blocks,
        "user": _message_blocks,
        "content_block_start": _block_start,
        "content_block_delta": _block_delta,
        "content_block_stop": _block_stop,
        "result": _result,
        "error": _error,
        "thread.started": _thread_started,
        "item.completed": _item_completed,
        "turn.completed": _turn_completed,
        "turn.failed": _turn_failed,
    }
