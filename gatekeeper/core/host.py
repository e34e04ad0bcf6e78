"""Host collaborator interfaces for Gatekeeper.

The core never mutates host state itself. It talks to the host through
two narrow interfaces injected at construction time:

- Executor: runs one domain operation ("createWall", ...) and reports back.
- HostStateReader: read-only access to the current document snapshot and
  to individual elements for post-execution verification.

SnapshotHost is a read-only implementation backed by a JSON snapshot
file, used by the CLI when no live host is attached.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from gatekeeper.core.exceptions import ValidationError
from gatekeeper.core.models import ExecutionOutcome, HostState

logger = logging.getLogger("gatekeeper.host")


class Executor(ABC):
    """Runs domain operations on the host's single execution channel."""

    @abstractmethod
    def execute(self, method_name: str, parameters: dict[str, Any]) -> ExecutionOutcome:
        """Execute one operation and return its outcome.

        Implementations may raise; the dispatcher converts exceptions into
        failed outcomes.
        """


class HostStateReader(ABC):
    """Read-only view of the host document."""

    @abstractmethod
    def read_state(self) -> Optional[HostState]:
        """Return the current document snapshot, or None when no document is open."""

    @abstractmethod
    def get_element(self, element_id: str) -> Optional[dict[str, Any]]:
        """Return the element's measured properties, or None if it does not exist."""


class SnapshotHost(Executor, HostStateReader):
    """Host backed by a JSON snapshot on disk.

    The snapshot has an optional ``state`` object (HostState fields) and an
    optional ``elements`` map of element id to properties. Execution is
    refused because a snapshot cannot be mutated.
    """

    def __init__(self, state: Optional[HostState] = None, elements: Optional[dict[str, dict]] = None):
        self._state = state
        self._elements = elements or {}

    @classmethod
    def from_file(cls, path: Path) -> "SnapshotHost":
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(f"Could not read host snapshot {path}: {e}") from e
        state_data = data.get("state")
        state = HostState(**state_data) if isinstance(state_data, dict) else None
        elements = data.get("elements") if isinstance(data.get("elements"), dict) else {}
        logger.info("Loaded host snapshot from %s (%d elements)", path, len(elements))
        return cls(state=state, elements=elements)

    def read_state(self) -> Optional[HostState]:
        return self._state

    def get_element(self, element_id: str) -> Optional[dict[str, Any]]:
        element = self._elements.get(str(element_id))
        return dict(element) if element is not None else None

    def execute(self, method_name: str, parameters: dict[str, Any]) -> ExecutionOutcome:
        return ExecutionOutcome(
            success=False,
            error_message=f"No live host attached; cannot execute {method_name}",
        )
