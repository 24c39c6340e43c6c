"""Ledger persistence for one project's adversarial loop.

Writes the Loop State document (adversarial-state.json) and the latest
findings document (codex-review.json) under tasks/<project_id>/. Every
write is atomic so reporting surfaces never read a torn document.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from crucible.fileio import atomic_write_json
from crucible.schemas.findings import Finding, FindingsDocument
from crucible.schemas.loop import LoopState
from crucible.workspace import Workspace

logger = logging.getLogger(__name__)


class LoopLedger:
    """Reads and writes the state documents of one project."""

    def __init__(self, workspace: Workspace, project_id: str) -> None:
        self._project_id = project_id
        self._state_path = workspace.state_path(project_id)
        self._findings_path = workspace.findings_path(project_id)

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def findings_path(self) -> Path:
        return self._findings_path

    def load_state(self) -> LoopState | None:
        """Return the persisted state, or None if there is none.

        Raises:
            ValueError: If the document exists but is not a valid state.
        """
        if not self._state_path.exists():
            return None
        try:
            raw = json.loads(self._state_path.read_text(encoding="utf-8"))
            return LoopState.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ValueError(f"Invalid loop state in {self._state_path}: {exc}") from exc

    def save_state(self, state: LoopState) -> None:
        state.touch()
        atomic_write_json(self._state_path, state.to_document())
        logger.debug(
            "Persisted loop state for %s (round %d, %s)",
            self._project_id, state.round, state.status,
        )

    def load_findings(self) -> FindingsDocument | None:
        if not self._findings_path.exists():
            return None
        try:
            raw = json.loads(self._findings_path.read_text(encoding="utf-8"))
            return FindingsDocument.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ValueError(f"Invalid findings document {self._findings_path}: {exc}") from exc

    def write_findings(self, findings: list[Finding]) -> None:
        document = FindingsDocument(findings=findings)
        atomic_write_json(self._findings_path, document.model_dump(mode="json"))


def _read_document(path: Path) -> dict[str, Any] | None:
    try:
        value = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unreadable document %s: %s", path, exc)
        return None
    return value if isinstance(value, dict) else None


def read_review(workspace: Workspace, project_id: str) -> dict[str, Any]:
    """Snapshot of a project's documents for read-only reporting.

    Missing or malformed documents come back as an empty findings list
    and a null state rather than raising.
    """
    findings_doc = _read_document(workspace.findings_path(project_id))
    state_doc = _read_document(workspace.state_path(project_id))

    findings: list = []
    if findings_doc is not None and isinstance(findings_doc.get("findings"), list):
        findings = findings_doc["findings"]

    adversarial_state = None
    if state_doc is not None:
        try:
            adversarial_state = LoopState.model_validate(state_doc).to_document()
        except ValidationError as exc:
            logger.warning("Malformed loop state for %s: %s", project_id, exc.errors()[:1])

    return {"findings": findings, "adversarialState": adversarial_state}
