"""Loop event emitter for live progress display.

Emits structured events while the adversarial loop runs. The CLI prints
them and the dashboard server broadcasts them over WebSocket. Events cover
every loop milestone: rounds, critique and remediation passes, retries,
rejection resolution, and the terminal outcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of loop events."""

    LOOP_STARTED = "loop_started"
    ROUND_STARTED = "round_started"
    CRITIQUE_STARTED = "critique_started"
    CRITIQUE_COMPLETED = "critique_completed"
    CRITIQUE_FAILED = "critique_failed"
    RETRY_TRIGGERED = "retry_triggered"
    REMEDIATION_STARTED = "remediation_started"
    REMEDIATION_COMPLETED = "remediation_completed"
    REMEDIATION_FAILED = "remediation_failed"
    REJECTIONS_RESOLVED = "rejections_resolved"
    ROUND_ABANDONED = "round_abandoned"
    LOOP_CONVERGED = "loop_converged"
    LOOP_EXHAUSTED = "loop_exhausted"
    CIRCUIT_BREAKER = "circuit_breaker"
    LOOP_ABORTED = "loop_aborted"
    CHANNEL_EVENT = "channel_event"
    ERROR = "error"


class LoopEvent(BaseModel):
    """A single loop event."""

    type: EventType = Field(description="Event type")
    timestamp: float = Field(
        default_factory=time.time,
        description="Unix timestamp when the event occurred",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload, varies by event type",
    )


# Type alias for event listener callbacks
EventListener = Callable[[LoopEvent], Any]

# Replay buffer bound for late-connecting dashboard clients
HISTORY_LIMIT = 2000


class LoopEventEmitter:
    """Broadcasts loop events to registered listeners.

    Listeners can be sync or async callables. The emitter is passed into
    the controller and invokers as an optional dependency.

    History holds the milestones of the most recent loop only: a
    ``loop_started`` event starts a fresh replay buffer, and per-record
    ``channel_event`` traffic is never buffered.
    """

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self._listeners: list[EventListener] = []
        self._history: deque[LoopEvent] = deque(maxlen=history_limit)

    @property
    def history(self) -> list[LoopEvent]:
        """Milestones of the current loop (for late-connecting clients)."""
        return list(self._history)

    def add_listener(self, listener: EventListener) -> None:
        """Register a listener to receive loop events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Remove a previously registered listener."""
        self._listeners = [ln for ln in self._listeners if ln is not listener]

    async def emit(self, event_type: EventType, **data: Any) -> None:
        """Emit a loop event to all registered listeners.

        Sync listeners are called directly; async listeners are awaited.
        Listener exceptions are logged but never propagate.
        """
        event = LoopEvent(type=event_type, data=data)
        if event_type == EventType.LOOP_STARTED:
            self._history.clear()
        if event_type != EventType.CHANNEL_EVENT:
            self._history.append(event)

        for listener in self._listeners:
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Event listener error for %s", event_type)
