"""FastAPI WebSocket server for the live loop dashboard.

Broadcasts loop events over WebSocket to all connected clients and
serves read-only REST endpoints for the persisted review documents, run
history and configuration.

Requires the 'dashboard' optional dependency group:
    pip install crucible[dashboard]
"""

import asyncio
import json
import logging
import threading
import time
from typing import Any

from crucible.dashboard.events import LoopEvent, LoopEventEmitter
from crucible.schemas.config import CrucibleConfig
from crucible.workspace import Workspace

logger = logging.getLogger(__name__)

# Global emitter instance shared between the server and loop runs
_emitter = LoopEventEmitter()


def get_emitter() -> LoopEventEmitter:
    """Return the global LoopEventEmitter for this server process."""
    return _emitter


def create_app(
    workspace: Workspace | None = None,
    config: CrucibleConfig | None = None,
    emitter: LoopEventEmitter | None = None,
) -> Any:
    """Create and configure the FastAPI application.

    Returns the app instance. FastAPI is imported inside this function
    so the module can be imported without dashboard deps installed.
    """
    try:
        from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
        from fastapi.middleware.cors import CORSMiddleware
    except ImportError as exc:
        raise ImportError(
            "Dashboard requires extra dependencies. "
            "Install with: pip install crucible[dashboard]"
        ) from exc

    workspace = workspace or Workspace.discover()
    events = emitter or _emitter

    app = FastAPI(
        title="Crucible Dashboard",
        description="Live adversarial review loop visualization",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Track connected WebSocket clients
    connected_clients: list[WebSocket] = []

    async def _broadcast(event: LoopEvent) -> None:
        """Broadcast a loop event to all connected WebSocket clients."""
        payload = json.dumps(event.model_dump(), default=str)
        disconnected: list[WebSocket] = []
        for ws in connected_clients:
            try:
                await ws.send_text(payload)
            except Exception:
                disconnected.append(ws)
        for ws in disconnected:
            connected_clients.remove(ws)

    events.add_listener(_broadcast)

    def _load_config() -> CrucibleConfig:
        if config is not None:
            return config
        from crucible.config_loader import load_config

        return load_config()

    # ── WebSocket ────────────────────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        """WebSocket endpoint for live event streaming.

        On connect, sends all historical events so the client can
        reconstruct the current loop state. Then streams new events as
        they occur.
        """
        await ws.accept()
        connected_clients.append(ws)
        logger.info("Dashboard client connected (%d total)", len(connected_clients))

        try:
            for event in events.history:
                await ws.send_text(json.dumps(event.model_dump(), default=str))

            # Keep connection alive, listen for client messages
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            if ws in connected_clients:
                connected_clients.remove(ws)
            logger.info(
                "Dashboard client disconnected (%d remaining)",
                len(connected_clients),
            )

    # ── REST API ─────────────────────────────────────────────────

    @app.get("/api/review")
    async def get_review(project_id: str | None = None) -> dict:
        """Latest findings and loop state for a project."""
        from crucible.errors import WorkspaceError
        from crucible.loop.ledger import read_review
        from crucible.workspace import normalize_project_id

        try:
            normalized = normalize_project_id(project_id)
        except WorkspaceError:
            raise HTTPException(status_code=400, detail="Missing or invalid project_id") from None
        return read_review(workspace, normalized)

    @app.get("/api/runs")
    async def list_runs(project_id: str | None = None, limit: int = 50) -> list[dict]:
        """List recent loop runs."""
        try:
            from crucible.persistence.database import close_db, init_db
            from crucible.persistence.runs import RunStore
            from crucible.schemas.runs import RunQuery

            db = await init_db(_load_config().history_db_path)
            try:
                store = RunStore(db)
                summaries = await store.list_runs(
                    RunQuery(limit=min(max(limit, 1), 100), project_filter=project_id)
                )
            finally:
                await close_db(db)
            return [s.model_dump(mode="json") for s in summaries]
        except Exception:
            logger.exception("Failed to list runs")
            return []

    @app.get("/api/runs/{run_id}")
    async def get_run(run_id: str) -> dict:
        """Full record of one run."""
        try:
            from crucible.persistence.database import close_db, init_db
            from crucible.persistence.export import export_json
            from crucible.persistence.runs import RunStore

            db = await init_db(_load_config().history_db_path)
            try:
                record = await RunStore(db).get_run(run_id)
            finally:
                await close_db(db)
        except Exception:
            logger.exception("Failed to get run %s", run_id)
            return {"error": "Failed to retrieve run"}
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return json.loads(export_json(record))

    @app.get("/api/config")
    async def get_config() -> dict:
        """Return the active configuration."""
        try:
            return _load_config().model_dump(mode="json")
        except Exception:
            logger.exception("Failed to load config")
            return {"error": "Failed to load configuration"}

    @app.get("/api/workspace")
    async def get_workspace() -> dict:
        """Resolved workspace directories and known projects."""
        return {
            "home": str(workspace.home),
            "projectRoot": str(workspace.project_root),
            "projects": workspace.list_projects(),
        }

    return app


def serve(app: Any, host: str = "127.0.0.1", port: int = 8420) -> None:
    """Run ``app`` with uvicorn (blocking)."""
    try:
        import uvicorn
    except ImportError as exc:
        raise ImportError(
            "Dashboard requires extra dependencies. "
            "Install with: pip install crucible[dashboard]"
        ) from exc
    uvicorn.run(app, host=host, port=port, log_level="warning")


class DashboardServer:
    """Runs the dashboard in a background thread next to a CLI loop run.

    The server thread owns its own event loop and a relay emitter. The
    listener returned by ``create_listener`` forwards events from the
    caller's loop into the server loop, where they are broadcast to
    WebSocket clients and kept for history replay.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8420,
        workspace: Workspace | None = None,
        config: CrucibleConfig | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._workspace = workspace
        self._config = config
        self._relay = LoopEventEmitter()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._server: Any = None
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self, ready_timeout: float = 5.0) -> None:
        """Start serving; returns once uvicorn reports it is listening.

        Raises:
            ImportError: If the dashboard extra is not installed.
            RuntimeError: If the server does not come up in time.
        """
        try:
            import uvicorn
        except ImportError as exc:
            raise ImportError(
                "Dashboard requires extra dependencies. "
                "Install with: pip install crucible[dashboard]"
            ) from exc

        app = create_app(self._workspace, self._config, emitter=self._relay)
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=self.host, port=self.port, log_level="warning")
        )
        self._loop = asyncio.new_event_loop()

        def _serve() -> None:
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self._server.serve())

        self._thread = threading.Thread(target=_serve, name="crucible-dashboard", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + ready_timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                raise RuntimeError(f"Dashboard failed to start on {self.url}")
            time.sleep(0.05)
        logger.info("Dashboard serving on %s", self.url)

    def create_listener(self):
        """Return a sync listener that relays events to the server loop."""
        def listener(event: LoopEvent) -> None:
            if self._loop is None or self._loop.is_closed():
                return
            asyncio.run_coroutine_threadsafe(
                self._relay.emit(event.type, **event.data), self._loop,
            )

        return listener

    def stop(self, timeout: float = 5.0) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
        thread_done = self._thread is None or not self._thread.is_alive()
        if thread_done and self._loop is not None and not self._loop.is_closed():
            self._loop.close()
        logger.info("Dashboard stopped")
