"""Live loop dashboard (optional dependency).

Provides a FastAPI WebSocket server that broadcasts loop events and
serves the persisted review documents. Install with:
pip install crucible[dashboard]
"""

from crucible.dashboard.events import EventType, LoopEvent, LoopEventEmitter

__all__ = [
    "EventType",
    "LoopEvent",
    "LoopEventEmitter",
]
