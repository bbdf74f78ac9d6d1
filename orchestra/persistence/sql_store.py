"""SQLAlchemy-backed task store."""

from typing import Any

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from orchestra.core.exceptions import PersistenceError
from orchestra.monitoring.models import ProjectProgress
from orchestra.persistence.base import TaskStore
from orchestra.persistence.database import Database
from orchestra.persistence.notifier import TaskNotifier
from orchestra.persistence.orm import (
    ProjectEventRow,
    ProjectProgressRow,
    TaskDependencyRow,
    TaskRow,
)
from orchestra.scheduling.models import ProjectEvent, Task, TaskDependency, utcnow

# Task fields mirrored one-to-one by TaskRow columns
_TASK_COLUMNS = (
    "project_id",
    "title",
    "description",
    "priority",
    "lead_agent",
    "assigned_agents",
    "dependencies",
    "status",
    "github_branch",
    "pull_request_url",
    "estimated_time",
    "actual_time",
    "started_at",
    "completed_at",
    "result",
    "error",
    "retry_count",
    "skipped",
)


def _task_to_values(task: Task) -> dict[str, Any]:
    data = task.model_dump(mode="json")
    values = {name: data[name] for name in _TASK_COLUMNS}
    # Keep datetimes as objects for the DateTime columns
    values["started_at"] = task.started_at
    values["completed_at"] = task.completed_at
    return values


def _row_to_task(row: TaskRow) -> Task:
    return Task.model_validate({
        "id": row.id,
        **{name: getattr(row, name) for name in _TASK_COLUMNS},
    })


def _row_to_dependency(row: TaskDependencyRow) -> TaskDependency:
    return TaskDependency(
        id=row.id,
        project_id=row.project_id,
        dependent_id=row.dependent_id,
        dependency_id=row.dependency_id,
        kind=row.kind,
        description=row.description,
        satisfied=row.satisfied,
        satisfied_at=row.satisfied_at,
    )


def _row_to_event(row: ProjectEventRow) -> ProjectEvent:
    return ProjectEvent(
        id=row.id,
        project_id=row.project_id,
        task_id=row.task_id,
        event_type=row.event_type,
        agent_name=row.agent_name,
        message=row.message,
        details=row.details or {},
        severity=row.severity,
        created_at=row.created_at,
    )


class SqlTaskStore(TaskStore):
    """
    Task store backed by a relational database through SQLAlchemy.

    Every SQLAlchemy error is re-raised as ``PersistenceError`` so callers
    handle a single failure type regardless of backend.

    Example:
        >>> db = Database("sqlite+aiosqlite:///./orchestra.db")
        >>> await db.init_schema()
        >>> store = SqlTaskStore(db)
        >>> await store.save_tasks(tasks)
    """

    def __init__(self, database: Database, notifier: TaskNotifier | None = None) -> None:
        self.database = database
        self.notifier = notifier

    # =========================================================================
    # TASKS
    # =========================================================================

    async def save_tasks(self, tasks: list[Task]) -> None:
        try:
            async with self.database.session() as session:
                for task in tasks:
                    existing = (
                        await session.execute(select(TaskRow).where(TaskRow.id == task.id))
                    ).scalar_one_or_none()
                    values = _task_to_values(task)
                    if existing is None:
                        session.add(TaskRow(id=task.id, **values))
                    else:
                        for name, value in values.items():
                            setattr(existing, name, value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save tasks: {e}") from e

        logger.debug(f"Saved {len(tasks)} tasks")

    async def get_task(self, task_id: str) -> Task | None:
        try:
            async with self.database.session() as session:
                row = (
                    await session.execute(select(TaskRow).where(TaskRow.id == task_id))
                ).scalar_one_or_none()
                return _row_to_task(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read task {task_id}: {e}") from e

    async def list_tasks(self, project_id: str) -> list[Task]:
        try:
            async with self.database.session() as session:
                query = (
                    select(TaskRow)
                    .where(TaskRow.project_id == project_id)
                    .order_by(TaskRow.seq)
                )
                rows = (await session.execute(query)).scalars().all()
                return [_row_to_task(row) for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list tasks of {project_id}: {e}") from e

    async def update_task(self, task_id: str, patch: dict[str, Any]) -> Task:
        unknown = set(patch) - set(Task.model_fields)
        if unknown:
            raise PersistenceError(f"Unknown task fields: {sorted(unknown)}")

        try:
            async with self.database.session() as session:
                row = (
                    await session.execute(select(TaskRow).where(TaskRow.id == task_id))
                ).scalar_one_or_none()
                if row is None:
                    raise PersistenceError(f"Task {task_id} not found")

                current = _row_to_task(row)
                try:
                    updated = Task.model_validate({**current.model_dump(), **patch})
                except ValidationError as e:
                    raise PersistenceError(f"Invalid update for task {task_id}: {e}") from e

                for name, value in _task_to_values(updated).items():
                    setattr(row, name, value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update task {task_id}: {e}") from e

        if self.notifier is not None:
            await self.notifier.publish(updated)

        return updated

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    async def get_task_dependencies(self, task_id: str) -> list[TaskDependency]:
        try:
            async with self.database.session() as session:
                query = (
                    select(TaskDependencyRow)
                    .where(TaskDependencyRow.dependent_id == task_id)
                    .order_by(TaskDependencyRow.created_at, TaskDependencyRow.dependency_id)
                )
                rows = (await session.execute(query)).scalars().all()
                return [_row_to_dependency(row) for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read dependencies of {task_id}: {e}") from e

    async def create_task_dependency(self, dependency: TaskDependency) -> None:
        try:
            async with self.database.session() as session:
                session.add(
                    TaskDependencyRow(
                        id=dependency.id,
                        project_id=dependency.project_id,
                        dependent_id=dependency.dependent_id,
                        dependency_id=dependency.dependency_id,
                        kind=dependency.kind.value,
                        description=dependency.description,
                        satisfied=dependency.satisfied,
                        satisfied_at=dependency.satisfied_at,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to create dependency "
                f"{dependency.dependent_id} -> {dependency.dependency_id}: {e}"
            ) from e

    async def satisfy_dependency(self, dependent_id: str, dependency_id: str) -> None:
        try:
            async with self.database.session() as session:
                query = select(TaskDependencyRow).where(
                    TaskDependencyRow.dependent_id == dependent_id,
                    TaskDependencyRow.dependency_id == dependency_id,
                )
                row = (await session.execute(query)).scalar_one_or_none()
                if row is None:
                    raise PersistenceError(
                        f"Dependency {dependent_id} -> {dependency_id} not found"
                    )
                if not row.satisfied:
                    row.satisfied = True
                    row.satisfied_at = utcnow()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to satisfy dependency {dependent_id} -> {dependency_id}: {e}"
            ) from e

    # =========================================================================
    # EVENTS & PROGRESS
    # =========================================================================

    async def create_event(self, event: ProjectEvent) -> None:
        try:
            async with self.database.session() as session:
                session.add(
                    ProjectEventRow(
                        id=event.id,
                        project_id=event.project_id,
                        task_id=event.task_id,
                        event_type=event.event_type,
                        agent_name=event.agent_name,
                        message=event.message,
                        details=event.details,
                        severity=event.severity.value,
                        created_at=event.created_at,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record event {event.event_type}: {e}") from e

    async def list_events(self, project_id: str, limit: int = 50) -> list[ProjectEvent]:
        try:
            async with self.database.session() as session:
                query = (
                    select(ProjectEventRow)
                    .where(ProjectEventRow.project_id == project_id)
                    .order_by(ProjectEventRow.seq.desc())
                    .limit(limit)
                )
                rows = (await session.execute(query)).scalars().all()
                return [_row_to_event(row) for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list events of {project_id}: {e}") from e

    async def update_project_progress(
        self,
        project_id: str,
        progress: ProjectProgress,
    ) -> None:
        try:
            async with self.database.session() as session:
                row = await session.get(ProjectProgressRow, project_id)
                if row is None:
                    row = ProjectProgressRow(project_id=project_id)
                    session.add(row)
                for name, value in progress.model_dump().items():
                    setattr(row, name, value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store progress of {project_id}: {e}") from e

    async def get_project_progress(self, project_id: str) -> ProjectProgress | None:
        try:
            async with self.database.session() as session:
                row = await session.get(ProjectProgressRow, project_id)
                if row is None:
                    return None
                return ProjectProgress(
                    total=row.total,
                    completed=row.completed,
                    failed=row.failed,
                    in_progress=row.in_progress,
                    percentage=row.percentage,
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read progress of {project_id}: {e}") from e

    async def close(self) -> None:
        await self.database.close()
