"""Invocation backends used by the critique and remediation invokers.

The invokers never touch subprocesses directly; they ask a backend to
``invoke`` a mode with a prompt and consume the resulting event stream.
SubprocessBackend is the production implementation. Tests substitute a
scripted backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import StrEnum
from pathlib import Path

from crucible.channel.process import ProcessChannel
from crucible.schemas.config import ChannelConfig
from crucible.schemas.events import ChannelEvent


class InvokeMode(StrEnum):
    """Which external process an invocation targets."""

    REVIEW = "review"
    FIX = "fix"


class ProcessBackend(ABC):
    """Abstract capability: run one prompt and stream back its events."""

    @abstractmethod
    def invoke(
        self,
        mode: InvokeMode,
        payload: str,
        *,
        session_id: str | None = None,
    ) -> AsyncIterator[ChannelEvent]:
        """Run ``payload`` in ``mode`` and yield the decoded events.

        Closing the iterator early (or cancelling its consumer) must
        release the underlying process.
        """

    async def aclose(self) -> None:
        """Release any resources still held by the backend."""


class SubprocessBackend(ProcessBackend):
    """Runs each invocation as a fresh (or resumed) CLI subprocess."""

    def __init__(
        self,
        critique: ChannelConfig,
        remediation: ChannelConfig,
        cwd: Path | str,
    ) -> None:
        self._channels = {
            InvokeMode.REVIEW: ProcessChannel(critique, cwd),
            InvokeMode.FIX: ProcessChannel(remediation, cwd),
        }

    async def invoke(
        self,
        mode: InvokeMode,
        payload: str,
        *,
        session_id: str | None = None,
    ) -> AsyncIterator[ChannelEvent]:
        channel = self._channels[mode]
        handle = await channel.start(session_id)
        try:
            await channel.send(handle, payload)
            async for event in channel.subscribe(handle):
                yield event
        finally:
            await channel.stop(handle)

    async def aclose(self) -> None:
        for channel in self._channels.values():
            await channel.aclose()
