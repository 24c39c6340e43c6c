"""Tests for the dashboard.

Covers: LoopEventEmitter, EventType, LoopEvent schema, the FastAPI app
routes and WebSocket history replay, and the background DashboardServer.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import pytest

from crucible.dashboard.events import EventType, LoopEvent, LoopEventEmitter
from crucible.loop.ledger import LoopLedger
from crucible.schemas.config import CrucibleConfig, LoopConfig
from crucible.schemas.loop import LoopState, LoopStatus, RoundOutcome, RoundRecord
from crucible.workspace import Workspace

# ══════════════════════════════════════════════════════════════════
# LoopEvent Schema
# ══════════════════════════════════════════════════════════════════


class TestLoopEvent:
    """LoopEvent schema tests."""

    def test_create_event_with_defaults(self):
        event = LoopEvent(type=EventType.LOOP_STARTED)
        assert event.timestamp > 0
        assert event.data == {}

    def test_event_serializes_to_dict(self):
        event = LoopEvent(type=EventType.CIRCUIT_BREAKER, data={"reason": "2 failures"})
        d = json.loads(json.dumps(event.model_dump(), default=str))
        assert d["type"] == "circuit_breaker"
        assert d["data"]["reason"] == "2 failures"

    def test_event_type_is_string(self):
        assert EventType.LOOP_CONVERGED == "loop_converged"
        assert str(EventType.RETRY_TRIGGERED) == "retry_triggered"


# ══════════════════════════════════════════════════════════════════
# LoopEventEmitter
# ══════════════════════════════════════════════════════════════════


class TestLoopEventEmitter:
    """LoopEventEmitter tests."""

    @pytest.mark.asyncio()
    async def test_emit_calls_sync_and_async_listeners(self):
        emitter = LoopEventEmitter()
        received = []

        async def async_listener(event):
            received.append(("async", event.type))

        emitter.add_listener(lambda e: received.append(("sync", e.type)))
        emitter.add_listener(async_listener)
        await emitter.emit(EventType.ROUND_STARTED, round=1, max_rounds=3)

        assert received == [
            ("sync", EventType.ROUND_STARTED), ("async", EventType.ROUND_STARTED),
        ]

    @pytest.mark.asyncio()
    async def test_listener_exception_does_not_propagate(self):
        emitter = LoopEventEmitter()
        emitter.add_listener(lambda e: 1 / 0)
        received = []
        emitter.add_listener(lambda e: received.append(e))

        await emitter.emit(EventType.ERROR, message="test")
        assert len(received) == 1

    @pytest.mark.asyncio()
    async def test_remove_listener(self):
        emitter = LoopEventEmitter()
        received = []
        listener = lambda e: received.append(e)  # noqa: E731
        emitter.add_listener(listener)
        emitter.remove_listener(listener)

        await emitter.emit(EventType.LOOP_STARTED)
        assert received == []

    @pytest.mark.asyncio()
    async def test_channel_events_reach_listeners_but_not_history(self):
        emitter = LoopEventEmitter()
        received = []
        emitter.add_listener(lambda e: received.append(e))

        await emitter.emit(EventType.LOOP_STARTED)
        await emitter.emit(EventType.CHANNEL_EVENT, mode="critique", event={"kind": "text"})

        assert len(received) == 2
        assert [e.type for e in emitter.history] == [EventType.LOOP_STARTED]

    @pytest.mark.asyncio()
    async def test_history_returns_copy(self):
        emitter = LoopEventEmitter()
        await emitter.emit(EventType.LOOP_STARTED)
        emitter.history.clear()
        assert len(emitter.history) == 1

    @pytest.mark.asyncio()
    async def test_loop_started_resets_history(self):
        emitter = LoopEventEmitter()
        await emitter.emit(EventType.LOOP_STARTED, project_id="first")
        await emitter.emit(EventType.LOOP_CONVERGED, round=1)
        await emitter.emit(EventType.LOOP_STARTED, project_id="second")

        history = emitter.history
        assert len(history) == 1
        assert history[0].data["project_id"] == "second"

    @pytest.mark.asyncio()
    async def test_history_is_bounded(self):
        emitter = LoopEventEmitter(history_limit=3)
        for round_number in range(1, 6):
            await emitter.emit(EventType.ROUND_STARTED, round=round_number)
        assert [e.data["round"] for e in emitter.history] == [3, 4, 5]


# ══════════════════════════════════════════════════════════════════
# Server
# ══════════════════════════════════════════════════════════════════


def _make_client(tmp_path, emitter: LoopEventEmitter | None = None):
    from fastapi.testclient import TestClient

    from crucible.dashboard.server import create_app

    workspace = Workspace(home=tmp_path, project_root=tmp_path)
    config = CrucibleConfig(
        loop=LoopConfig(max_rounds=4),
        history_db_path=str(tmp_path / "history.db"),
    )
    app = create_app(workspace, config, emitter=emitter or LoopEventEmitter())
    return TestClient(app), workspace


class TestServer:
    """App creation and route tests."""

    def test_app_routes(self, tmp_path):
        pytest.importorskip("fastapi")
        from crucible.dashboard.server import create_app

        app = create_app(Workspace(home=tmp_path, project_root=tmp_path))
        paths = [r.path for r in app.routes if hasattr(r, "path")]
        for path in ("/ws", "/api/review", "/api/runs", "/api/runs/{run_id}", "/api/config"):
            assert path in paths

    def test_get_emitter_returns_singleton(self):
        pytest.importorskip("fastapi")
        from crucible.dashboard.server import get_emitter

        assert get_emitter() is get_emitter()
        assert isinstance(get_emitter(), LoopEventEmitter)

    @pytest.mark.parametrize("query", ["", "?project_id=", "?project_id=../etc"])
    def test_review_rejects_missing_or_invalid_project(self, tmp_path, query):
        pytest.importorskip("fastapi")
        client, _ = _make_client(tmp_path)
        response = client.get(f"/api/review{query}")
        assert response.status_code == 400

    def test_review_without_documents(self, tmp_path):
        pytest.importorskip("fastapi")
        client, _ = _make_client(tmp_path)
        response = client.get("/api/review?project_id=demo")
        assert response.status_code == 200
        assert response.json() == {"findings": [], "adversarialState": None}

    def test_review_with_state(self, tmp_path):
        pytest.importorskip("fastapi")
        client, workspace = _make_client(tmp_path)
        LoopLedger(workspace, "demo").save_state(LoopState(
            project_id="demo", round=1, status=LoopStatus.CONVERGED,
            rounds=[RoundRecord(round=1, outcome=RoundOutcome.CONVERGED)],
        ))
        body = client.get("/api/review?project_id=demo").json()
        assert body["adversarialState"]["status"] == "converged"
        assert body["adversarialState"]["rounds"][0]["codexFindings"] == 0

    def test_config(self, tmp_path):
        pytest.importorskip("fastapi")
        client, _ = _make_client(tmp_path)
        body = client.get("/api/config").json()
        assert body["loop"]["max_rounds"] == 4
        assert body["critique"]["command"][0] == "codex"

    def test_workspace(self, tmp_path):
        pytest.importorskip("fastapi")
        client, workspace = _make_client(tmp_path)
        workspace.project_dir("demo").mkdir(parents=True)
        body = client.get("/api/workspace").json()
        assert body["projects"] == ["demo"]
        assert body["home"] == str(tmp_path)

    def test_runs(self, tmp_path):
        pytest.importorskip("fastapi")
        from crucible.persistence.database import close_db, init_db
        from crucible.persistence.runs import RunStore
        from crucible.schemas.runs import RunRecord

        async def _seed():
            db = await init_db(str(tmp_path / "history.db"))
            await RunStore(db).save_run(RunRecord(
                run_id="cafe0123beef",
                project_id="demo",
                started_at=datetime(2026, 3, 1, tzinfo=UTC),
                state=LoopState(project_id="demo", round=1, status=LoopStatus.CONVERGED),
            ))
            await close_db(db)

        asyncio.run(_seed())
        client, _ = _make_client(tmp_path)

        runs = client.get("/api/runs").json()
        assert [r["run_id"] for r in runs] == ["cafe0123beef"]
        assert runs[0]["converged"] is True

        record = client.get("/api/runs/cafe").json()
        assert record["run_id"] == "cafe0123beef"
        assert record["state"]["projectId"] == "demo"

        assert client.get("/api/runs/deadbeef").status_code == 404

    def test_websocket_replays_history(self, tmp_path):
        pytest.importorskip("fastapi")
        emitter = LoopEventEmitter()
        asyncio.run(emitter.emit(EventType.LOOP_STARTED, project_id="demo", round=0))
        asyncio.run(emitter.emit(EventType.ROUND_STARTED, round=1, max_rounds=3))
        client, _ = _make_client(tmp_path, emitter=emitter)

        with client.websocket_connect("/ws") as ws:
            first = ws.receive_json()
            second = ws.receive_json()

        assert first["type"] == "loop_started"
        assert first["data"]["project_id"] == "demo"
        assert second["type"] == "round_started"


class TestDashboardServer:
    def test_listener_before_start_is_a_no_op(self):
        from crucible.dashboard.server import DashboardServer

        server = DashboardServer(port=9123)
        assert server.url == "http://127.0.0.1:9123"
        listener = server.create_listener()
        listener(LoopEvent(type=EventType.LOOP_STARTED))
        server.stop()
