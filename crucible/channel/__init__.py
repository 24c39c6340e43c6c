"""Process channel: agent CLI subprocesses as typed event streams."""

from crucible.channel.backend import InvokeMode, ProcessBackend, SubprocessBackend
from crucible.channel.codec import StreamDecoder
from crucible.channel.process import ProcessChannel, SessionHandle

__all__ = [
    "InvokeMode",
    "ProcessBackend",
    "ProcessChannel",
    "SessionHandle",
    "StreamDecoder",
    "SubprocessBackend",
]
