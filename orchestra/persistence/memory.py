"""Dict-backed task store."""

from typing import Any

from loguru import logger
from pydantic import ValidationError

from orchestra.core.exceptions import PersistenceError
from orchestra.monitoring.models import ProjectProgress
from orchestra.persistence.base import TaskStore
from orchestra.persistence.notifier import TaskNotifier
from orchestra.scheduling.models import ProjectEvent, Task, TaskDependency, utcnow


class InMemoryTaskStore(TaskStore):
    """
    Task store that keeps everything in process memory.

    Tasks and edges are copied on the way in and out, so callers never
    share mutable state with the store. Every task update is published to
    the optional notifier.

    Example:
        >>> store = InMemoryTaskStore()
        >>> await store.save_tasks([task])
        >>> (await store.get_task(task.id)).title
        'Create User model'
    """

    def __init__(self, notifier: TaskNotifier | None = None) -> None:
        self.notifier = notifier
        self._tasks: dict[str, Task] = {}
        self._edges: dict[tuple[str, str], TaskDependency] = {}
        self._events: list[ProjectEvent] = []
        self._progress: dict[str, ProjectProgress] = {}

    async def save_tasks(self, tasks: list[Task]) -> None:
        for task in tasks:
            self._tasks[task.id] = task.model_copy(deep=True)
        logger.debug(f"Saved {len(tasks)} tasks")

    async def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def list_tasks(self, project_id: str) -> list[Task]:
        return [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if task.project_id == project_id
        ]

    async def update_task(self, task_id: str, patch: dict[str, Any]) -> Task:
        current = self._tasks.get(task_id)
        if current is None:
            raise PersistenceError(f"Task {task_id} not found")

        unknown = set(patch) - set(Task.model_fields)
        if unknown:
            raise PersistenceError(f"Unknown task fields: {sorted(unknown)}")

        try:
            updated = Task.model_validate({**current.model_dump(), **patch})
        except ValidationError as e:
            raise PersistenceError(f"Invalid update for task {task_id}: {e}") from e

        self._tasks[task_id] = updated

        if self.notifier is not None:
            await self.notifier.publish(updated.model_copy(deep=True))

        return updated.model_copy(deep=True)

    async def get_task_dependencies(self, task_id: str) -> list[TaskDependency]:
        return [
            edge.model_copy()
            for (dependent_id, _), edge in self._edges.items()
            if dependent_id == task_id
        ]

    async def create_task_dependency(self, dependency: TaskDependency) -> None:
        key = (dependency.dependent_id, dependency.dependency_id)
        if key in self._edges:
            raise PersistenceError(
                f"Dependency {dependency.dependent_id} -> {dependency.dependency_id} already exists"
            )
        self._edges[key] = dependency.model_copy()

    async def satisfy_dependency(self, dependent_id: str, dependency_id: str) -> None:
        edge = self._edges.get((dependent_id, dependency_id))
        if edge is None:
            raise PersistenceError(f"Dependency {dependent_id} -> {dependency_id} not found")
        if not edge.satisfied:
            edge.satisfied = True
            edge.satisfied_at = utcnow()

    async def create_event(self, event: ProjectEvent) -> None:
        self._events.append(event)

    async def list_events(self, project_id: str, limit: int = 50) -> list[ProjectEvent]:
        events = [e for e in reversed(self._events) if e.project_id == project_id]
        return events[:limit]

    async def update_project_progress(
        self,
        project_id: str,
        progress: ProjectProgress,
    ) -> None:
        self._progress[project_id] = progress.model_copy()

    async def get_project_progress(self, project_id: str) -> ProjectProgress | None:
        progress = self._progress.get(project_id)
        return progress.model_copy() if progress else None
