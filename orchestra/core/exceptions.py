"""Exception hierarchy for Orchestra.

Retry exhaustion is deliberately absent: ``FailureHandler.execute_retry``
signals it with a ``False`` return value.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from orchestra.scheduling.models import ExecutionPhase


class OrchestraError(Exception):
    """Base class for all Orchestra errors."""


class StructuralError(OrchestraError):
    """The task graph itself is invalid."""


class CircularDependencyError(StructuralError):
    """A dependency cycle prevents ordering some tasks.

    Attributes:
        cycle: Cycle path found by depth-first search, if known.
        stuck_ids: Task IDs that could not be placed into any phase.
        phases: Phases that were ordered before the cycle was hit.
    """

    def __init__(
        self,
        message: str,
        cycle: list[str] | None = None,
        stuck_ids: list[str] | None = None,
        phases: list[ExecutionPhase] | None = None,
    ) -> None:
        super().__init__(message)
        self.cycle = cycle or []
        self.stuck_ids = stuck_ids or []
        self.phases = phases or []


class PersistenceError(OrchestraError):
    """The task store could not be read or written."""


class InvalidTransitionError(OrchestraError, ValueError):
    """A task status change is not allowed by the state machine."""

    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Task {task_id} cannot move from '{current}' to '{requested}'"
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class SourceControlError(OrchestraError):
    """A source-control operation (branch, commit, pull request) failed."""
