"""Accumulation of one invocation's event stream.

Both invokers consume a backend stream the same way: keep the text, the
tool calls they care about, any error events, and the terminal result
record. The transcript is filled in place so whatever arrived before a
timeout is still available for logging.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field

from crucible.channel.backend import InvokeMode, ProcessBackend
from crucible.dashboard.events import EventType, LoopEventEmitter
from crucible.schemas.events import (
    ErrorEvent,
    RawEvent,
    ResultEvent,
    SessionEvent,
    TextEvent,
    ToolUseEvent,
)

logger = logging.getLogger(__name__)


@dataclass
class Transcript:
    """What an invocation produced so far."""

    tool_name: str
    text_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolUseEvent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    raw_lines: list[str] = field(default_factory=list)
    session_id: str | None = None
    result: ResultEvent | None = None
    seen_tool_ids: set[str] = field(default_factory=set, repr=False)

    @property
    def text(self) -> str:
        body = "".join(self.text_parts)
        if not body.strip() and self.result is not None:
            body = self.result.text
        if not body.strip():
            body = "\n".join(self.raw_lines)
        return body

    @property
    def raw(self) -> str:
        """Everything textual received, for diagnostics."""
        return "\n".join(["".join(self.text_parts), *self.raw_lines, *self.errors]).strip()

    @property
    def cost_usd(self) -> float:
        return self.result.cost_usd if self.result else 0.0

    def failure(self) -> str | None:
        """Why this transcript cannot be trusted, or None if it can."""
        if self.errors:
            return f"process reported an error: {self.errors[0]}"
        if self.result is None:
            return "stream ended without a result record"
        if self.result.is_error:
            return f"result record flagged an error: {self.result.text[:200]}"
        return None


async def collect(
    backend: ProcessBackend,
    mode: InvokeMode,
    prompt: str,
    transcript: Transcript,
    *,
    session_id: str | None = None,
    emitter: LoopEventEmitter | None = None,
) -> None:
    """Drain one invocation into ``transcript``, stopping at the result."""
    stream = backend.invoke(mode, prompt, session_id=session_id)
    async with contextlib.aclosing(stream):
        async for event in stream:
            if emitter:
                await emitter.emit(
                    EventType.CHANNEL_EVENT, mode=mode.value, event=event.model_dump(),
                )
            if isinstance(event, SessionEvent):
                transcript.session_id = event.session_id
            elif isinstance(event, TextEvent):
                transcript.text_parts.append(event.text)
            elif isinstance(event, ToolUseEvent):
                if event.name != transcript.tool_name:
                    continue
                # Partial-message streams repeat the call in the full message
                if event.tool_id and event.tool_id in transcript.seen_tool_ids:
                    continue
                transcript.seen_tool_ids.add(event.tool_id)
                transcript.tool_calls.append(event)
            elif isinstance(event, ErrorEvent):
                logger.warning("%s process error: %s", mode.value, event.message)
                transcript.errors.append(event.message)
            elif isinstance(event, RawEvent):
                transcript.raw_lines.append(event.line)
            elif isinstance(event, ResultEvent):
                transcript.result = event
                if event.session_id:
                    transcript.session_id = event.session_id
                break
