"""Active-project registry (tasks/registry.json).

Every read-modify-write cycle goes through ProjectRegistry.update, which
queues callers behind a per-file asyncio.Lock and writes the document back
atomically. Plain reads take a snapshot without the lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from crucible.fileio import atomic_write_json
from crucible.workspace import normalize_project_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One lock per registry file, shared by every ProjectRegistry in the process
_locks: dict[str, asyncio.Lock] = {}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class RegistryProject(BaseModel):
    """One registered project."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(description="Display name")
    status: str = Field(default="active", description="Free-form project status")
    created_at: str = Field(default_factory=_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=_now_iso, alias="updatedAt")


class Registry(BaseModel):
    """The registry document."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = 1
    projects: dict[str, RegistryProject] = Field(default_factory=dict)
    active_project: str | None = Field(default=None, alias="activeProject")


class ProjectRegistry:
    """Serialised access to one registry file.

    Instances opened on the same path share a lock, so updates queue
    behind each other however many instances a process creates.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = _locks.setdefault(str(path.resolve()), asyncio.Lock())

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Registry:
        """Return a snapshot. Missing or corrupt files read as empty."""
        if not self._path.exists():
            return Registry()
        try:
            return Registry.model_validate(
                json.loads(self._path.read_text(encoding="utf-8"))
            )
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable registry %s: %s", self._path, exc)
            return Registry()

    async def update(self, fn: Callable[[Registry], T | Awaitable[T]]) -> T:
        """Run ``fn`` on the current registry under the lock, then persist.

        ``fn`` mutates the registry in place; its return value is passed
        back to the caller. Nothing is written if ``fn`` raises.
        """
        async with self._lock:
            registry = self.read()
            result = fn(registry)
            if asyncio.iscoroutine(result):
                result = await result
            atomic_write_json(self._path, registry.model_dump(mode="json", by_alias=True))
            return result  # type: ignore[return-value]

    async def add_project(self, project_id: str, name: str | None = None) -> RegistryProject:
        """Register a project (or refresh its name) and return its entry."""
        project_id = normalize_project_id(project_id)

        def _add(registry: Registry) -> RegistryProject:
            entry = registry.projects.get(project_id)
            if entry is None:
                entry = RegistryProject(name=name or project_id)
                registry.projects[project_id] = entry
            else:
                if name:
                    entry.name = name
                entry.updated_at = _now_iso()
            if registry.active_project is None:
                registry.active_project = project_id
            return entry

        entry = await self.update(_add)
        logger.info("Registered project %s", project_id)
        return entry

    async def set_active(self, project_id: str) -> None:
        """Make ``project_id`` the active project.

        Raises:
            KeyError: If the project is not registered.
        """
        project_id = normalize_project_id(project_id)

        def _activate(registry: Registry) -> None:
            if project_id not in registry.projects:
                raise KeyError(project_id)
            registry.active_project = project_id

        await self.update(_activate)

    def active_project(self) -> str | None:
        return self.read().active_project
