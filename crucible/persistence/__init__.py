"""Crucible run history layer.

Provides SQLite-backed storage for finished loop runs, with support for
querying, export (JSON/Markdown), and cleanup.
"""

from crucible.persistence.database import close_db, init_db
from crucible.persistence.export import export_json, export_markdown
from crucible.persistence.runs import RunStore

__all__ = [
    "RunStore",
    "close_db",
    "export_json",
    "export_markdown",
    "init_db",
]
