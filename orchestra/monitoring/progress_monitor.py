"""Progress monitoring - aggregate task status for a project."""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from loguru import logger

from orchestra.core.exceptions import PersistenceError
from orchestra.monitoring.models import ProjectProgress, TaskStatusSnapshot
from orchestra.scheduling.models import Task, TaskStatus

if TYPE_CHECKING:
    from orchestra.persistence.base import TaskStore
    from orchestra.persistence.notifier import TaskNotifier

ProgressCallback = Callable[[ProjectProgress], Awaitable[None] | None]
TaskUpdateCallback = Callable[[Task], Awaitable[None] | None]

_NUMBER = r"(\d+(?:\.\d+)?)"
_HOURS_PATTERN = re.compile(rf"{_NUMBER}(?:\s*-\s*{_NUMBER})?\s*h", re.IGNORECASE)
_MINUTES_PATTERN = re.compile(rf"{_NUMBER}(?:\s*-\s*{_NUMBER})?\s*m", re.IGNORECASE)

_STATUS_PROGRESS = {
    TaskStatus.COMPLETED: 100,
    TaskStatus.IN_PROGRESS: 50,
}


def parse_duration(text: str | None) -> int:
    """
    Parse a free-form duration estimate into minutes.

    Ranges count as their upper bound. Hour and minute parts are added
    together; anything unrecognized counts as zero.

    Args:
        text: Estimate such as ``"4-6 hours"``, ``"30m"`` or ``"1.5h"``.

    Returns:
        Duration in whole minutes.

    Example:
        >>> parse_duration("4-6 hours")
        360
        >>> parse_duration("2h 30m")
        150
    """
    if not text:
        return 0

    minutes = 0.0

    hours_match = _HOURS_PATTERN.search(text)
    if hours_match:
        minutes += float(hours_match.group(2) or hours_match.group(1)) * 60

    minutes_match = _MINUTES_PATTERN.search(text)
    if minutes_match:
        minutes += float(minutes_match.group(2) or minutes_match.group(1))

    return round(minutes)


def format_duration(minutes: int) -> str:
    """
    Format minutes as a short human-readable duration.

    Example:
        >>> format_duration(150)
        '2h 30m'
    """
    if minutes <= 0:
        return "0 minutes"

    hours, mins = divmod(minutes, 60)

    if hours == 0:
        return f"{mins} minute{'s' if mins != 1 else ''}"
    if mins == 0:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{hours}h {mins}m"


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class ProgressMonitor:
    """
    Monitor the completion state of one project.

    Works pull-based through ``get_progress`` and push-based once
    ``start`` subscribes it to task change notifications.

    Example:
        >>> monitor = ProgressMonitor("proj-1", store, notifier)
        >>> monitor.start(on_progress=lambda p: print(f"{p.percentage}%"))
        >>> await monitor.get_estimated_time_remaining()
        '2h 30m'
        >>> monitor.stop()
    """

    def __init__(
        self,
        project_id: str,
        store: TaskStore,
        notifier: TaskNotifier | None = None,
    ) -> None:
        """
        Initialize the progress monitor.

        Args:
            project_id: Project to monitor.
            store: Task store to read tasks from.
            notifier: Source of task change notifications for ``start``.
        """
        self.project_id = project_id
        self.store = store
        self.notifier = notifier
        self._on_progress: ProgressCallback | None = None
        self._on_task_update: TaskUpdateCallback | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    async def calculate_progress(self) -> ProjectProgress:
        """
        Count the project's tasks and compute the completion percentage.

        Returns:
            ProjectProgress; percentage is 0 for a project without tasks.
        """
        tasks = await self.store.list_tasks(self.project_id)

        total = len(tasks)
        completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
        failed = sum(1 for t in tasks if t.status == TaskStatus.FAILED)
        in_progress = sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS)

        return ProjectProgress(
            total=total,
            completed=completed,
            failed=failed,
            in_progress=in_progress,
            percentage=round(completed / total * 100) if total > 0 else 0,
        )

    async def get_progress(self) -> ProjectProgress:
        """Get a fresh progress snapshot without persisting it."""
        return await self.calculate_progress()

    async def update_progress(self) -> ProjectProgress:
        """
        Recalculate progress, persist it, and notify the progress callback.

        Store failures are logged; a failed read yields an empty progress.

        Returns:
            The recalculated ProjectProgress.
        """
        try:
            progress = await self.calculate_progress()
        except PersistenceError as e:
            logger.error(f"Failed to calculate progress for {self.project_id}: {e}")
            progress = ProjectProgress()
        else:
            try:
                await self.store.update_project_progress(self.project_id, progress)
            except PersistenceError as e:
                logger.error(f"Failed to store progress for {self.project_id}: {e}")

        logger.debug(
            f"Project {self.project_id} progress: {progress.percentage}% "
            f"({progress.completed}/{progress.total})"
        )

        if self._on_progress is not None:
            try:
                await _invoke(self._on_progress, progress)
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")

        return progress

    async def get_estimated_time_remaining(self) -> str:
        """
        Estimate the time left for the project.

        Sums the estimates of all tasks and subtracts the time consumed by
        completed tasks, using the recorded actual time where available.

        Returns:
            Formatted duration such as ``"2h 30m"``.
        """
        tasks = await self.store.list_tasks(self.project_id)

        total_minutes = 0
        consumed_minutes = 0

        for task in tasks:
            estimated = parse_duration(task.estimated_time)
            total_minutes += estimated

            if task.status == TaskStatus.COMPLETED:
                actual = parse_duration(task.actual_time) if task.actual_time else 0
                consumed_minutes += actual or estimated

        return format_duration(max(0, total_minutes - consumed_minutes))

    async def get_task_statuses(self) -> list[TaskStatusSnapshot]:
        """
        Get a status line for every task of the project.

        Returns:
            One TaskStatusSnapshot per task, in store order.
        """
        tasks = await self.store.list_tasks(self.project_id)
        return [
            TaskStatusSnapshot(
                task_id=task.id,
                title=task.title,
                status=task.status,
                progress=_STATUS_PROGRESS.get(task.status, 0),
            )
            for task in tasks
        ]

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def start(
        self,
        on_progress: ProgressCallback | None = None,
        on_task_update: TaskUpdateCallback | None = None,
    ) -> None:
        """
        Subscribe to task changes and re-aggregate on each of them.

        Args:
            on_progress: Called with the new ProjectProgress after each change.
            on_task_update: Called with the changed Task.

        Raises:
            ValueError: If the monitor has no notifier.
        """
        if self.notifier is None:
            raise ValueError("ProgressMonitor.start requires a TaskNotifier")

        if self.is_running:
            logger.warning(f"Progress monitor for {self.project_id} already running")
            return

        self._on_progress = on_progress
        self._on_task_update = on_task_update
        self._unsubscribe = self.notifier.subscribe(self._handle_task_change)
        logger.info(f"Started progress monitoring for {self.project_id}")

    def stop(self) -> None:
        """Unsubscribe from task changes."""
        if self._unsubscribe is None:
            return

        self._unsubscribe()
        self._unsubscribe = None
        self._on_progress = None
        self._on_task_update = None
        logger.info(f"Stopped progress monitoring for {self.project_id}")

    async def _handle_task_change(self, task: Task) -> None:
        if task.project_id != self.project_id:
            return

        if self._on_task_update is not None:
            try:
                await _invoke(self._on_task_update, task)
            except Exception as e:
                logger.warning(f"Task update callback error: {e}")

        await self.update_progress()
