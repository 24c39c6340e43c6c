"""Run store for saving, retrieving, listing, and deleting loop runs.

Provides the RunStore class that wraps low-level database operations
with Pydantic schema serialization/deserialization.
"""

from __future__ import annotations

import logging
from datetime import datetime

import aiosqlite

from crucible.schemas.loop import LoopState
from crucible.schemas.runs import RunQuery, RunRecord, RunSummary

logger = logging.getLogger(__name__)

# Shortest id prefix accepted in place of a full run id
_MIN_PREFIX = 4


class RunStore:
    """Persistent run store backed by SQLite.

    All methods are async and operate on an aiosqlite connection
    initialized by database.init_db().
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._db.row_factory = aiosqlite.Row

    async def save_run(self, record: RunRecord) -> None:
        """Insert or replace a run record."""
        state = record.state
        await self._db.execute(
            """
            INSERT OR REPLACE INTO loop_runs
                (run_id, project_id, started_at, completed_at, status,
                 exhausted, rounds, converged, open_blocking, total_cost,
                 duration_seconds, state_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.run_id,
                record.project_id,
                record.started_at.isoformat(),
                record.completed_at.isoformat() if record.completed_at else None,
                state.status.value,
                int(state.exhausted),
                len(state.rounds),
                int(record.converged),
                len(state.open_blocking),
                record.total_cost,
                record.duration_seconds,
                state.model_dump_json(by_alias=True),
            ),
        )
        await self._db.commit()
        logger.info("Saved run %s", record.run_id)

    async def resolve_run_id(self, prefix: str) -> str | None:
        """Resolve a run id prefix to a full run id.

        Returns the full id if exactly one run matches, None otherwise.
        Exact matches always win.
        """
        async with self._db.execute(
            "SELECT run_id FROM loop_runs WHERE run_id = ?", (prefix,),
        ) as cursor:
            row = await cursor.fetchone()
        if row:
            return row["run_id"]
        if len(prefix) >= _MIN_PREFIX:
            async with self._db.execute(
                "SELECT run_id FROM loop_runs WHERE run_id LIKE ? LIMIT 2",
                (prefix + "%",),
            ) as cursor:
                rows = await cursor.fetchall()
            if len(rows) == 1:
                return rows[0]["run_id"]
        return None

    async def get_run(self, run_id: str) -> RunRecord | None:
        """Retrieve a run by id or unique id prefix (at least 4 chars)."""
        full_id = await self.resolve_run_id(run_id)
        if full_id is None:
            return None
        async with self._db.execute(
            "SELECT * FROM loop_runs WHERE run_id = ?", (full_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        completed_at = (
            datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
        )
        return RunRecord(
            run_id=row["run_id"],
            project_id=row["project_id"],
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=completed_at,
            state=LoopState.model_validate_json(row["state_json"]),
            duration_seconds=row["duration_seconds"],
            total_cost=row["total_cost"],
        )

    async def list_runs(self, query: RunQuery) -> list[RunSummary]:
        """List runs matching the query, most recent first."""
        conditions: list[str] = []
        params: list[object] = []

        if query.project_filter:
            conditions.append("project_id = ?")
            params.append(query.project_filter)

        if query.status_filter:
            if query.status_filter == "exhausted":
                conditions.append("exhausted = 1")
            else:
                conditions.append("status = ?")
                params.append(query.status_filter)

        if query.since:
            conditions.append("started_at >= ?")
            params.append(query.since)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        sql = f"""
            SELECT * FROM loop_runs
            {where}
            ORDER BY started_at DESC
            LIMIT ? OFFSET ?
        """  # noqa: S608
        params.extend([query.limit, query.offset])

        summaries: list[RunSummary] = []
        async with self._db.execute(sql, params) as cursor:
            async for row in cursor:
                summaries.append(RunSummary(
                    run_id=row["run_id"],
                    project_id=row["project_id"],
                    started_at=datetime.fromisoformat(row["started_at"]),
                    status=row["status"],
                    exhausted=bool(row["exhausted"]),
                    rounds=row["rounds"],
                    converged=bool(row["converged"]),
                    open_blocking=row["open_blocking"],
                    total_cost=row["total_cost"],
                    duration_seconds=row["duration_seconds"],
                ))
        return summaries

    async def delete_run(self, run_id: str) -> bool:
        """Delete a run by id or unique prefix. Returns True if deleted."""
        full_id = await self.resolve_run_id(run_id)
        if not full_id:
            return False
        cursor = await self._db.execute(
            "DELETE FROM loop_runs WHERE run_id = ?", (full_id,),
        )
        await self._db.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted run %s", full_id)
        return deleted
