"""Persist a task plan and its declared dependencies."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from orchestra.core.exceptions import PersistenceError
from orchestra.scheduling.models import DependencyKind, Task, TaskDependency

if TYPE_CHECKING:
    from orchestra.persistence.base import TaskStore


def resolve_dependency_refs(tasks: list[Task]) -> dict[str, list[str]]:
    """
    Resolve each task's declared dependencies to task IDs.

    A reference matches a task ID first, then a task title. References
    that match nothing, and references to the task itself, are dropped
    with a warning.

    Args:
        tasks: Tasks of one plan.

    Returns:
        Mapping of task ID to resolved dependency IDs, in declaration order.
    """
    by_id = {task.id: task for task in tasks}
    by_title: dict[str, str] = {}
    for task in tasks:
        by_title.setdefault(task.title, task.id)

    resolved: dict[str, list[str]] = {}

    for task in tasks:
        ids: list[str] = []
        for ref in task.dependencies:
            dependency_id = ref if ref in by_id else by_title.get(ref)

            if dependency_id is None:
                logger.warning(f"Task '{task.title}' depends on unknown task '{ref}', skipping")
                continue
            if dependency_id == task.id:
                logger.warning(f"Task '{task.title}' lists itself as a dependency, skipping")
                continue
            if dependency_id not in ids:
                ids.append(dependency_id)

        resolved[task.id] = ids

    return resolved


async def persist_plan(store: TaskStore, project_id: str, tasks: list[Task]) -> list[Task]:
    """
    Save a plan's tasks and create one ``blocks`` edge per declared dependency.

    Tasks are stamped with ``project_id`` and their ``dependencies`` are
    rewritten to the resolved task IDs before saving.

    Args:
        store: Task store to write to.
        project_id: Owning project.
        tasks: Planned tasks; dependencies may be given as IDs or titles.

    Returns:
        The saved tasks.

    Raises:
        PersistenceError: If tasks cannot be saved.
    """
    resolved = resolve_dependency_refs(tasks)

    planned = [
        task.model_copy(update={"project_id": project_id, "dependencies": resolved[task.id]})
        for task in tasks
    ]
    await store.save_tasks(planned)

    created = 0
    for task in planned:
        for dependency_id in task.dependencies:
            edge = TaskDependency(
                project_id=project_id,
                dependent_id=task.id,
                dependency_id=dependency_id,
                kind=DependencyKind.BLOCKS,
            )
            try:
                await store.create_task_dependency(edge)
                created += 1
            except PersistenceError as e:
                logger.error(f"Failed to create dependency {task.id} -> {dependency_id}: {e}")

    logger.info(f"Persisted plan for {project_id}: {len(planned)} tasks, {created} dependencies")
    return planned
