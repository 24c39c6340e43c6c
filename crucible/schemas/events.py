"""Typed records decoded from a process channel's output stream.

Every output line of an external process decodes into zero or more of
these variants (none for pure bookkeeping records). Unparseable lines
become RawEvent rather than being discarded.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class SessionEvent(BaseModel):
    """The process announced the session/thread id it is bound to."""

    kind: Literal["session"] = "session"
    session_id: str = Field(description="Session identifier reported by the process")


class TextEvent(BaseModel):
    """Assistant text (a whole message or a streamed delta)."""

    kind: Literal["text"] = "text"
    text: str = Field(description="Assistant text")


class ToolUseEvent(BaseModel):
    """The assistant invoked a tool with structured arguments."""

    kind: Literal["tool_use"] = "tool_use"
    tool_id: str = Field(default="", description="Tool invocation id")
    name: str = Field(description="Tool name")
    input: dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class ToolResultEvent(BaseModel):
    """Result of a tool invocation, fed back to the assistant."""

    kind: Literal["tool_result"] = "tool_result"
    tool_use_id: str = Field(default="", description="Id of the matching tool_use")
    content: str = Field(default="", description="Flattened tool output")
    is_error: bool = Field(default=False, description="Whether the tool failed")


class ResultEvent(BaseModel):
    """Terminal record carrying summary metrics for the invocation."""

    kind: Literal["result"] = "result"
    text: str = Field(default="", description="Final result text, if any")
    is_error: bool = Field(default=False, description="Whether the run ended in error")
    session_id: str = Field(default="", description="Session id, if reported")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock duration")
    num_turns: int = Field(default=0, ge=0, description="Agentic turns used")
    cost_usd: float = Field(default=0.0, ge=0.0, description="Reported cost in USD")
    usage: dict[str, Any] = Field(default_factory=dict, description="Token usage counters")


class ErrorEvent(BaseModel):
    """The process (or the channel on its behalf) reported an error."""

    kind: Literal["error"] = "error"
    message: str = Field(description="Error description")


class RawEvent(BaseModel):
    """A line that did not decode as a known structured record."""

    kind: Literal["raw"] = "raw"
    line: str = Field(description="The line as received")


ChannelEvent = Annotated[
    SessionEvent
    | TextEvent
    | ToolUseEvent
    | ToolResultEvent
    | ResultEvent
    | ErrorEvent
    | RawEvent,
    Field(discriminator="kind"),
]
