"""Crucible schema definitions.

All Pydantic v2 models used by the channel, the invokers and the loop.
"""

from crucible.schemas.config import (
    ChannelConfig,
    CrucibleConfig,
    InputFormat,
    LoopConfig,
)
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
from crucible.schemas.findings import (
    Category,
    Finding,
    FindingsDocument,
    Rejection,
    Severity,
)
from crucible.schemas.loop import (
    LoopState,
    LoopStatus,
    RoundOutcome,
    RoundRecord,
)
from crucible.schemas.runs import RunQuery, RunRecord, RunSummary

__all__ = [
    "Category",
    "ChannelConfig",
    "ChannelEvent",
    "CrucibleConfig",
    "ErrorEvent",
    "Finding",
    "FindingsDocument",
    "InputFormat",
    "LoopConfig",
    "LoopState",
    "LoopStatus",
    "RawEvent",
    "Rejection",
    "ResultEvent",
    "RoundOutcome",
    "RoundRecord",
    "RunQuery",
    "RunRecord",
    "RunSummary",
    "SessionEvent",
    "Severity",
    "TextEvent",
    "ToolResultEvent",
    "ToolUseEvent",
]
