"""Abstract task store - the persistence capability the core consumes.

The scheduler, failure handler, and progress monitor receive a store
instance through their constructors. Every implementation raises
``PersistenceError`` when the backing store cannot be read or written.
"""

from abc import ABC, abstractmethod
from typing import Any

from orchestra.monitoring.models import ProjectProgress
from orchestra.scheduling.models import ProjectEvent, Task, TaskDependency


class TaskStore(ABC):
    """
    Abstract base class for task persistence.

    Implementations:
    - InMemoryTaskStore: dict-backed store for tests and single-process use
    - SqlTaskStore: SQLAlchemy async store (PostgreSQL, SQLite)

    Example:
        >>> class MyStore(TaskStore):
        ...     async def get_task(self, task_id):
        ...         # Implementation
        ...         return task
    """

    # =========================================================================
    # TASKS
    # =========================================================================

    @abstractmethod
    async def save_tasks(self, tasks: list[Task]) -> None:
        """
        Insert or replace tasks.

        Args:
            tasks: Tasks to persist.
        """

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        """
        Get a task by ID.

        Args:
            task_id: Task identifier.

        Returns:
            Task if found, None otherwise.
        """

    @abstractmethod
    async def list_tasks(self, project_id: str) -> list[Task]:
        """
        List all tasks of a project in creation order.

        Args:
            project_id: Project identifier.
        """

    @abstractmethod
    async def update_task(self, task_id: str, patch: dict[str, Any]) -> Task:
        """
        Apply a partial update to a task.

        Args:
            task_id: Task identifier.
            patch: Field name -> new value.

        Returns:
            The updated task.

        Raises:
            PersistenceError: If the task does not exist or the write fails.
        """

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    @abstractmethod
    async def get_task_dependencies(self, task_id: str) -> list[TaskDependency]:
        """
        Get the edges on which a task depends (all kinds).

        Args:
            task_id: ID of the dependent task.
        """

    @abstractmethod
    async def create_task_dependency(self, dependency: TaskDependency) -> None:
        """
        Persist a new dependency edge.

        Raises:
            PersistenceError: If an edge between the same pair already exists.
        """

    @abstractmethod
    async def satisfy_dependency(self, dependent_id: str, dependency_id: str) -> None:
        """
        Mark the edge ``dependent_id -> dependency_id`` satisfied.

        Setting an already satisfied edge again is a no-op.
        """

    # =========================================================================
    # EVENTS & PROGRESS
    # =========================================================================

    @abstractmethod
    async def create_event(self, event: ProjectEvent) -> None:
        """Append an event to the project audit log."""

    @abstractmethod
    async def list_events(self, project_id: str, limit: int = 50) -> list[ProjectEvent]:
        """Get the most recent events of a project, newest first."""

    @abstractmethod
    async def update_project_progress(
        self,
        project_id: str,
        progress: ProjectProgress,
    ) -> None:
        """Store the latest aggregated progress of a project."""

    @abstractmethod
    async def get_project_progress(self, project_id: str) -> ProjectProgress | None:
        """Get the last stored progress of a project."""

    async def close(self) -> None:
        """Release resources (call on shutdown)."""
