"""Change set collection.

The critique pass reviews a change set: the diff of the project's working
tree against a base ref, or a diff file supplied by the user. The change
set is re-collected at the start of every round so the critique sees the
remediation pass's edits.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field

from crucible.errors import ChangeSetError

logger = logging.getLogger(__name__)

# Diffs larger than this are cut before being placed in a prompt
MAX_DIFF_CHARS = 400_000


class ChangeSet(BaseModel):
    """Code under review."""

    base: str = Field(default="HEAD", description="Ref the diff is taken against")
    diff: str = Field(default="", description="Unified diff text")
    files: list[str] = Field(default_factory=list, description="Changed file paths")
    untracked: list[str] = Field(default_factory=list, description="New, untracked files")
    truncated: bool = Field(default=False, description="Whether the diff was cut")

    @property
    def is_empty(self) -> bool:
        return not self.diff.strip() and not self.untracked


class ChangeSource(ABC):
    """Produces the current change set on demand."""

    @abstractmethod
    def collect(self) -> ChangeSet:
        """Return the change set as it is now.

        Raises:
            ChangeSetError: If the change set cannot be read.
        """


def _truncate(diff: str) -> tuple[str, bool]:
    if len(diff) <= MAX_DIFF_CHARS:
        return diff, False
    logger.warning("Diff is %d chars; truncating to %d", len(diff), MAX_DIFF_CHARS)
    return diff[:MAX_DIFF_CHARS] + "\n... [diff truncated]\n", True


class GitChangeSource(ChangeSource):
    """Working-tree diff of a git repository.

    All operations use subprocess to call git directly.
    """

    def __init__(self, project_root: Path, base: str = "HEAD") -> None:
        self._cwd = str(project_root)
        self._base = base

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command and return the result."""
        cmd = ["git", *args]
        return subprocess.run(
            cmd,
            cwd=self._cwd,
            capture_output=True,
            text=True,
            check=check,
            timeout=30,
        )

    def is_git_repo(self) -> bool:
        try:
            result = self._run("rev-parse", "--is-inside-work-tree", check=False)
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def collect(self) -> ChangeSet:
        if not self.is_git_repo():
            raise ChangeSetError(f"Not a git repository: {self._cwd}")
        try:
            diff = self._run("diff", self._base).stdout
            names = self._run("diff", "--name-only", self._base).stdout
            untracked = self._run(
                "ls-files", "--others", "--exclude-standard",
            ).stdout
        except subprocess.CalledProcessError as e:
            raise ChangeSetError(f"git failed: {e.stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise ChangeSetError(f"git timed out: {' '.join(e.cmd)}") from e

        diff, truncated = _truncate(diff)
        change_set = ChangeSet(
            base=self._base,
            diff=diff,
            files=[n for n in names.splitlines() if n.strip()],
            untracked=[n for n in untracked.splitlines() if n.strip()],
            truncated=truncated,
        )
        logger.info(
            "Collected change set against %s: %d files, %d untracked",
            self._base, len(change_set.files), len(change_set.untracked),
        )
        return change_set


class DiffFileSource(ChangeSource):
    """A unified diff read from a file; re-read on every collect."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def collect(self) -> ChangeSet:
        try:
            diff = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ChangeSetError(f"Cannot read diff file {self._path}: {exc}") from exc
        files = [
            line[len("+++ b/"):].strip()
            for line in diff.splitlines()
            if line.startswith("+++ b/")
        ]
        diff, truncated = _truncate(diff)
        return ChangeSet(base=self._path.name, diff=diff, files=files, truncated=truncated)
