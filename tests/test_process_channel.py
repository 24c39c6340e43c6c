"""Tests for the process channel, using real subprocesses.

Each test writes a small Python script standing in for an agent CLI and
runs it with the current interpreter.
"""

from __future__ import annotations

import sys
import textwrap

import pytest

from crucible.channel.process import ProcessChannel, is_valid_session_id
from crucible.errors import ChannelClosed, ProcessUnavailable
from crucible.schemas.config import ChannelConfig, InputFormat
from crucible.schemas.events import ErrorEvent, RawEvent, ResultEvent, SessionEvent, TextEvent

# Reads the whole prompt, then answers like `claude --output-format stream-json`
_ECHO_AGENT = """
import json, sys
prompt = sys.stdin.read()
print(json.dumps({"type": "system", "subtype": "init", "session_id": "sess-1"}), flush=True)
print(json.dumps({"type": "assistant", "message": {"content": [
    {"type": "text", "text": "got: " + prompt}]}}), flush=True)
print(json.dumps({"type": "assistant", "message": {"content": [
    {"type": "text", "text": "argv: " + " ".join(sys.argv[1:])}]}}), flush=True)
print(json.dumps({"type": "result", "result": "done", "session_id": "sess-1",
                  "total_cost_usd": 0.01}), flush=True)
"""

# Reads one stream-json user message from a stdin that stays open
_STREAM_AGENT = """
import json, sys
message = json.loads(sys.stdin.readline())
print(json.dumps({"type": "assistant", "message": {"content": [
    {"type": "text", "text": message["message"]["content"]}]}}), flush=True)
print(json.dumps({"type": "result", "result": "ok"}), flush=True)
"""

_FAILING_AGENT = """
import sys
sys.stdin.read()
print("fatal: model not available", file=sys.stderr, flush=True)
sys.exit(3)
"""

_SLEEPING_AGENT = """
import sys, time
print('{"type": "system", "session_id": "sleepy"}', flush=True)
time.sleep(60)
"""

# A result record with an unusable cost, then a normal exchange
_ODD_RECORD_AGENT = """
import json, sys
sys.stdin.read()
print(json.dumps({"type": "result", "total_cost_usd": "n/a"}), flush=True)
print(json.dumps({"type": "assistant", "message": {"content": [
    {"type": "text", "text": "still here"}]}}), flush=True)
print(json.dumps({"type": "result", "result": "done"}), flush=True)
"""


def _make_channel(tmp_path, source: str, **overrides) -> ProcessChannel:
    script = tmp_path / "agent.py"
    script.write_text(textwrap.dedent(source), encoding="utf-8")
    defaults = {"command": [sys.executable, str(script)], "stop_grace": 2.0}
    defaults.update(overrides)
    return ProcessChannel(ChannelConfig(**defaults), cwd=tmp_path)


async def _drain(channel: ProcessChannel, handle) -> list:
    return [event async for event in channel.subscribe(handle)]


class TestSessionIds:
    @pytest.mark.parametrize("value", ["abc", "0b1c-22", "thread_1.2:x"])
    def test_valid(self, value):
        assert is_valid_session_id(value)

    @pytest.mark.parametrize("value", [None, "", "a b", "x;rm -rf", "a" * 200])
    def test_invalid(self, value):
        assert not is_valid_session_id(value)


class TestProcessChannel:
    @pytest.mark.asyncio()
    async def test_round_trip_text_mode(self, tmp_path):
        async with _make_channel(tmp_path, _ECHO_AGENT) as channel:
            handle = await channel.start()
            await channel.send(handle, "review this")
            events = await _drain(channel, handle)
            await channel.stop(handle)

        assert isinstance(events[0], SessionEvent)
        assert events[1] == TextEvent(text="got: review this")
        assert isinstance(events[-1], ResultEvent)
        assert events[-1].cost_usd == 0.01
        assert handle.session_id == "sess-1"

    @pytest.mark.asyncio()
    async def test_resume_flag_is_passed(self, tmp_path):
        async with _make_channel(tmp_path, _ECHO_AGENT) as channel:
            handle = await channel.start("prev-session")
            await channel.send(handle, "x")
            events = await _drain(channel, handle)

        texts = [e.text for e in events if isinstance(e, TextEvent)]
        assert "argv: --resume prev-session" in texts

    @pytest.mark.asyncio()
    async def test_invalid_session_id_starts_fresh(self, tmp_path):
        async with _make_channel(tmp_path, _ECHO_AGENT) as channel:
            handle = await channel.start("bad id; rm")
            await channel.send(handle, "x")
            events = await _drain(channel, handle)

        texts = [e.text for e in events if isinstance(e, TextEvent)]
        assert "argv: " in texts

    @pytest.mark.asyncio()
    async def test_stream_json_input(self, tmp_path):
        channel = _make_channel(tmp_path, _STREAM_AGENT, input_format=InputFormat.STREAM_JSON)
        async with channel:
            handle = await channel.start()
            await channel.send(handle, "fix F1")
            events = await _drain(channel, handle)

        assert events[0] == TextEvent(text="fix F1")
        assert isinstance(events[-1], ResultEvent)

    @pytest.mark.asyncio()
    async def test_missing_executable(self, tmp_path):
        channel = ProcessChannel(
            ChannelConfig(command=[str(tmp_path / "no-such-agent")]), cwd=tmp_path,
        )
        with pytest.raises(ProcessUnavailable):
            await channel.start()

    @pytest.mark.asyncio()
    async def test_nonzero_exit_reports_stderr(self, tmp_path):
        async with _make_channel(tmp_path, _FAILING_AGENT) as channel:
            handle = await channel.start()
            await channel.send(handle, "x")
            events = await _drain(channel, handle)

        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 1
        assert "code 3" in errors[0].message
        assert "model not available" in errors[0].message

    @pytest.mark.asyncio()
    async def test_send_after_text_mode_close(self, tmp_path):
        async with _make_channel(tmp_path, _ECHO_AGENT) as channel:
            handle = await channel.start()
            await channel.send(handle, "x")
            with pytest.raises(ChannelClosed):
                await channel.send(handle, "again")

    @pytest.mark.asyncio()
    async def test_stop_terminates_and_is_idempotent(self, tmp_path):
        channel = _make_channel(tmp_path, _SLEEPING_AGENT)
        handle = await channel.start()
        await channel.stop(handle)
        await channel.stop(handle)

        assert handle.stopped
        assert handle.returncode is not None
        assert channel.handles == []
        assert await _drain(channel, handle) == []

    @pytest.mark.asyncio()
    async def test_send_after_stop(self, tmp_path):
        channel = _make_channel(tmp_path, _SLEEPING_AGENT)
        handle = await channel.start()
        await channel.stop(handle)
        with pytest.raises(ChannelClosed):
            await channel.send(handle, "x")

    @pytest.mark.asyncio()
    async def test_single_subscriber(self, tmp_path):
        async with _make_channel(tmp_path, _SLEEPING_AGENT) as channel:
            handle = await channel.start()
            stream = channel.subscribe(handle)
            first = await stream.__anext__()
            assert first == SessionEvent(session_id="sleepy")
            with pytest.raises(ChannelClosed):
                channel.subscribe(handle)
            await stream.aclose()

    @pytest.mark.asyncio()
    async def test_second_subscribe_before_iteration_is_rejected(self, tmp_path):
        async with _make_channel(tmp_path, _SLEEPING_AGENT) as channel:
            handle = await channel.start()
            stream = channel.subscribe(handle)
            with pytest.raises(ChannelClosed):
                channel.subscribe(handle)
            first = await stream.__anext__()
            assert first == SessionEvent(session_id="sleepy")
            await stream.aclose()

    @pytest.mark.asyncio()
    async def test_subscribe_after_stop_yields_nothing(self, tmp_path):
        async with _make_channel(tmp_path, _SLEEPING_AGENT) as channel:
            handle = await channel.start()
            channel.subscribe(handle)
            await channel.stop(handle)
            assert await _drain(channel, handle) == []

    @pytest.mark.asyncio()
    async def test_lines_after_odd_record_are_delivered(self, tmp_path):
        async with _make_channel(tmp_path, _ODD_RECORD_AGENT) as channel:
            handle = await channel.start()
            await channel.send(handle, "x")
            events = await _drain(channel, handle)

        assert isinstance(events[0], RawEvent)
        assert events[1] == TextEvent(text="still here")
        assert isinstance(events[2], ResultEvent)
        assert events[2].text == "done"

    @pytest.mark.asyncio()
    async def test_live_session_is_reused(self, tmp_path):
        async with _make_channel(tmp_path, _SLEEPING_AGENT) as channel:
            handle = await channel.start()
            stream = channel.subscribe(handle)
            await stream.__anext__()
            await stream.aclose()

            again = await channel.start("sleepy")
            assert again is handle
            assert len(channel.handles) == 1

    @pytest.mark.asyncio()
    async def test_aclose_stops_everything(self, tmp_path):
        channel = _make_channel(tmp_path, _SLEEPING_AGENT)
        first = await channel.start()
        second = await channel.start()
        await channel.aclose()
        assert first.stopped and second.stopped
        assert channel.handles == []
