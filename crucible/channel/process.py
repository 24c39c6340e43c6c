"""Process channel: one external agent CLI subprocess per session.

Spawns the configured command with asyncio, writes the prompt to its
stdin, and turns its stdout into an ordered stream of typed events via
StreamDecoder. Handles are stopped with SIGTERM, then SIGKILL after a
grace period.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import uuid
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

from crucible.channel.codec import StreamDecoder
from crucible.errors import ChannelClosed, ProcessUnavailable
from crucible.schemas.config import ChannelConfig, InputFormat
from crucible.schemas.events import (
    ChannelEvent,
    ErrorEvent,
    ResultEvent,
    SessionEvent,
)

logger = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

# Lines of stderr kept for the exit error message
_STDERR_TAIL = 20

# Queue marker: no further events will arrive
_CLOSED = object()


def is_valid_session_id(session_id: str | None) -> bool:
    """Whether ``session_id`` is safe to pass on a command line."""
    return bool(session_id) and SESSION_ID_RE.match(session_id) is not None


@dataclass(eq=False)
class SessionHandle:
    """A live (or finished) subprocess owned by a ProcessChannel."""

    key: str
    process: asyncio.subprocess.Process = field(repr=False)
    session_id: str | None = None
    queue: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    stderr_tail: deque[str] = field(
        default_factory=lambda: deque(maxlen=_STDERR_TAIL), repr=False,
    )
    reader: asyncio.Task | None = field(default=None, repr=False)
    stderr_reader: asyncio.Task | None = field(default=None, repr=False)
    stdin_closed: bool = False
    stopped: bool = False
    drained: bool = False
    subscribed: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def alive(self) -> bool:
        return not self.stopped and self.process.returncode is None


class ProcessChannel:
    """Starts, feeds, observes and stops agent CLI subprocesses.

    At most one live subprocess exists per session id: starting with the
    id of a live handle returns that handle.
    """

    def __init__(self, config: ChannelConfig, cwd: Path | str) -> None:
        self._config = config
        self._cwd = Path(cwd)
        self._handles: dict[str, SessionHandle] = {}

    @property
    def handles(self) -> list[SessionHandle]:
        """Handles that have not been stopped yet."""
        return list(self._handles.values())

    async def __aenter__(self) -> ProcessChannel:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self, session_id: str | None = None) -> SessionHandle:
        """Spawn the configured command, resuming ``session_id`` if given.

        Raises:
            ProcessUnavailable: If the executable is missing, not
                executable, or fails to launch within start_timeout.
        """
        argv = list(self._config.command)
        if session_id is not None and not is_valid_session_id(session_id):
            logger.warning("Ignoring invalid session id %r; starting fresh", session_id)
            session_id = None

        if session_id is not None:
            existing = self._find_live(session_id)
            if existing is not None:
                logger.debug("Reusing live handle %s for session %s", existing.key, session_id)
                return existing
            argv += [self._config.resume_flag, session_id]

        env = dict(os.environ)
        for name in self._config.unset_env:
            env.pop(name, None)
        env.update(self._config.env)

        try:
            process = await asyncio.wait_for(
                asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(self._cwd),
                    env=env,
                    limit=self._config.line_limit,
                ),
                timeout=self._config.start_timeout,
            )
        except TimeoutError as exc:
            raise ProcessUnavailable(
                f"{argv[0]} did not start within {self._config.start_timeout}s"
            ) from exc
        except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
            raise ProcessUnavailable(f"Cannot launch {argv[0]}: {exc}") from exc
        except OSError as exc:
            raise ProcessUnavailable(f"Failed to launch {argv[0]}: {exc}") from exc

        handle = SessionHandle(
            key=uuid.uuid4().hex[:12], process=process, session_id=session_id,
        )
        handle.reader = asyncio.create_task(self._pump_stdout(handle))
        handle.stderr_reader = asyncio.create_task(self._pump_stderr(handle))
        self._handles[handle.key] = handle
        logger.info(
            "Started %s (pid %d, handle %s%s)",
            argv[0], process.pid, handle.key,
            f", resuming {session_id}" if session_id else "",
        )
        return handle

    async def send(self, handle: SessionHandle, payload: str) -> None:
        """Write one prompt to the process's stdin.

        In ``text`` mode stdin is closed afterwards and later sends fail.

        Raises:
            ChannelClosed: If the handle is stopped, the process has
                exited, or stdin is already closed.
        """
        stdin = handle.process.stdin
        if not handle.alive or handle.stdin_closed or stdin is None:
            raise ChannelClosed(f"Handle {handle.key} cannot accept input")

        if self._config.input_format == InputFormat.STREAM_JSON:
            message = {"type": "user", "message": {"role": "user", "content": payload}}
            data = (json.dumps(message) + "\n").encode("utf-8")
        else:
            data = payload.encode("utf-8")

        try:
            stdin.write(data)
            await stdin.drain()
            if self._config.input_format == InputFormat.TEXT:
                handle.stdin_closed = True
                stdin.close()
                await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as exc:
            handle.stdin_closed = True
            raise ChannelClosed(f"Handle {handle.key} stdin closed: {exc}") from exc
        logger.debug("Sent %d bytes to handle %s", len(data), handle.key)

    def subscribe(self, handle: SessionHandle) -> AsyncIterator[ChannelEvent]:
        """Return the handle's event stream.

        The stream ends after a ``result`` record, on process exit, or
        when the handle is stopped. Only one subscription may be open
        at a time; the slot is taken here, not on first iteration.

        Raises:
            ChannelClosed: If another subscription is already open.
        """
        if handle.subscribed and not (handle.stopped or handle.drained):
            raise ChannelClosed(f"Handle {handle.key} already has a subscriber")
        handle.subscribed = True
        return self._iter_events(handle)

    async def stop(self, handle: SessionHandle) -> None:
        """Terminate the process and close its stream. Idempotent."""
        if handle.stopped:
            return
        handle.stopped = True
        self._handles.pop(handle.key, None)

        process = handle.process
        if process.stdin is not None and not handle.stdin_closed:
            handle.stdin_closed = True
            process.stdin.close()

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self._config.stop_grace)
            except TimeoutError:
                logger.warning(
                    "Handle %s (pid %d) ignored SIGTERM for %.1fs; killing",
                    handle.key, process.pid, self._config.stop_grace,
                )
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        tasks = [t for t in (handle.reader, handle.stderr_reader) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

        # Undelivered events are discarded; open subscriptions see the close
        while not handle.queue.empty():
            handle.queue.get_nowait()
        handle.queue.put_nowait(_CLOSED)
        logger.info("Stopped handle %s (exit code %s)", handle.key, process.returncode)

    async def aclose(self) -> None:
        """Stop every live handle."""
        for handle in list(self._handles.values()):
            await self.stop(handle)

    # ── Internals ────────────────────────────────────────────────

    def _find_live(self, session_id: str) -> SessionHandle | None:
        for handle in self._handles.values():
            if handle.session_id == session_id and handle.alive:
                return handle
        return None

    async def _iter_events(self, handle: SessionHandle) -> AsyncIterator[ChannelEvent]:
        try:
            if handle.stopped or handle.drained:
                return
            while True:
                item = await handle.queue.get()
                if item is _CLOSED:
                    handle.drained = True
                    return
                yield item
                if isinstance(item, ResultEvent):
                    return
        finally:
            handle.subscribed = False

    async def _pump_stdout(self, handle: SessionHandle) -> None:
        decoder = StreamDecoder()
        stdout = handle.process.stdout
        assert stdout is not None
        try:
            while True:
                try:
                    raw = await stdout.readline()
                except ValueError:
                    logger.warning(
                        "Handle %s emitted a line over %d bytes; skipped",
                        handle.key, self._config.line_limit,
                    )
                    handle.queue.put_nowait(ErrorEvent(
                        message=f"Output line exceeded {self._config.line_limit} bytes",
                    ))
                    continue
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace")
                logger.debug("[%s] << %s", handle.key, line.rstrip()[:500])
                for event in decoder.decode(line):
                    if isinstance(event, SessionEvent):
                        handle.session_id = event.session_id
                    handle.queue.put_nowait(event)

            returncode = await handle.process.wait()
            if handle.stderr_reader is not None:
                await asyncio.wait([handle.stderr_reader])
            if returncode != 0 and not handle.stopped:
                message = f"Process exited with code {returncode}"
                if handle.stderr_tail:
                    message += ": " + " | ".join(handle.stderr_tail)
                logger.warning("Handle %s: %s", handle.key, message)
                handle.queue.put_nowait(ErrorEvent(message=message))
        finally:
            handle.queue.put_nowait(_CLOSED)

    async def _pump_stderr(self, handle: SessionHandle) -> None:
        stderr = handle.process.stderr
        if stderr is None:
            return
        while True:
            try:
                raw = await stderr.readline()
            except ValueError:
                continue
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                handle.stderr_tail.append(text)
                logger.debug("[%s] stderr: %s", handle.key, text)
