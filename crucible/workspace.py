"""Workspace layout: where project state, rules and the registry live.

Two roots are distinguished:

- the Crucible home (``CRUCIBLE_HOME``, default: current directory) holds
  ``tasks/<project_id>/`` state documents, ``rules/`` and the registry;
- the project root (``CRUCIBLE_PROJECT_ROOT``, default: nearest directory
  with a ``.git`` entry, searching the home and up to five parents) is
  where git runs and where the agent processes work.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from pydantic import BaseModel, Field

from crucible.errors import WorkspaceError

logger = logging.getLogger(__name__)

HOME_ENV = "CRUCIBLE_HOME"
PROJECT_ROOT_ENV = "CRUCIBLE_PROJECT_ROOT"

STATE_FILENAME = "adversarial-state.json"
FINDINGS_FILENAME = "codex-review.json"

# How many parent directories are searched for a .git entry
_GIT_SEARCH_DEPTH = 5

_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")


class Rule(BaseModel):
    """A single rule document forwarded to the critique prompt."""

    rule_id: str = Field(description="Path under rules/ without .md, e.g. backend/sql")
    name: str = Field(description="Display name (file stem)")
    content: str = Field(description="Markdown body")


class RuleSet(BaseModel):
    """Rule documents in load order."""

    rules: list[Rule] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rules)


def normalize_project_id(raw: str | None) -> str:
    """Validate a project id for use as a directory name.

    Raises:
        WorkspaceError: If the id is empty, too long, or contains path
            separators or other unsafe characters.
    """
    project_id = (raw or "").strip()
    if not _PROJECT_ID_RE.match(project_id) or project_id in {".", ".."}:
        raise WorkspaceError(f"Invalid project id: {raw!r}")
    return project_id


def find_git_root(start: Path) -> Path | None:
    """Return ``start`` or the nearest parent holding ``.git``."""
    current = start.resolve()
    for _ in range(_GIT_SEARCH_DEPTH + 1):
        if (current / ".git").exists():
            return current
        if current.parent == current:
            break
        current = current.parent
    return None


class Workspace:
    """Resolved directories for one Crucible home."""

    def __init__(self, home: Path, project_root: Path) -> None:
        self.home = home
        self.project_root = project_root

    @classmethod
    def discover(cls, start: Path | None = None) -> Workspace:
        """Resolve the home and project root from the environment."""
        home_env = os.environ.get(HOME_ENV)
        home = Path(home_env).expanduser() if home_env else (start or Path.cwd())
        home = home.resolve()

        root_env = os.environ.get(PROJECT_ROOT_ENV)
        if root_env:
            project_root = Path(root_env).expanduser().resolve()
        else:
            project_root = find_git_root(home) or home
        logger.debug("Workspace home=%s project_root=%s", home, project_root)
        return cls(home=home, project_root=project_root)

    @property
    def tasks_dir(self) -> Path:
        return self.home / "tasks"

    @property
    def rules_dir(self) -> Path:
        return self.home / "rules"

    @property
    def registry_path(self) -> Path:
        return self.tasks_dir / "registry.json"

    def project_dir(self, project_id: str) -> Path:
        return self.tasks_dir / normalize_project_id(project_id)

    def state_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / STATE_FILENAME

    def findings_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / FINDINGS_FILENAME

    def list_projects(self) -> list[str]:
        """Project ids that have a state directory under tasks/."""
        if not self.tasks_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.tasks_dir.iterdir()
            if p.is_dir() and _PROJECT_ID_RE.match(p.name)
        )

    def load_rule_set(self, rule_ids: list[str] | None = None) -> RuleSet:
        """Load rule documents from rules/.

        With no ``rule_ids`` every ``*.md`` file under rules/ is loaded.
        Ids that resolve outside rules/ or to a missing file are skipped
        with a warning.
        """
        rules_dir = self.rules_dir
        if not rules_dir.is_dir():
            return RuleSet()
        real_root = rules_dir.resolve()

        if rule_ids is None:
            paths = sorted(real_root.rglob("*.md"))
        else:
            paths = []
            for rule_id in rule_ids:
                relative = rule_id if rule_id.endswith(".md") else f"{rule_id}.md"
                candidate = (rules_dir / relative).resolve()
                if not candidate.is_relative_to(real_root):
                    logger.warning("Path traversal blocked for rule id %r", rule_id)
                    continue
                if not candidate.is_file():
                    logger.warning("Rule file not found for rule id %r", rule_id)
                    continue
                paths.append(candidate)

        rules: list[Rule] = []
        for path in paths:
            resolved = path.resolve()
            if not resolved.is_relative_to(real_root):
                logger.warning("Skipping rule outside rules/: %s", path)
                continue
            try:
                content = resolved.read_text(encoding="utf-8")
            except OSError as exc:
                logger.warning("Failed to read rule %s: %s", path, exc)
                continue
            rule_id = resolved.relative_to(real_root).with_suffix("").as_posix()
            rules.append(Rule(rule_id=rule_id, name=resolved.stem, content=content))
        return RuleSet(rules=rules)
