"""In-process publish/subscribe of task changes."""

import inspect
from collections.abc import Awaitable, Callable

from loguru import logger

from orchestra.scheduling.models import Task

TaskChangeCallback = Callable[[Task], Awaitable[None] | None]


class TaskNotifier:
    """
    Fan out task change notifications to subscribers.

    Stores publish every task update; observers such as the progress
    monitor subscribe to re-aggregate on each change. Callbacks may be
    plain functions or coroutine functions.

    Example:
        >>> notifier = TaskNotifier()
        >>> unsubscribe = notifier.subscribe(lambda task: print(task.status))
        >>> await notifier.publish(task)
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: list[TaskChangeCallback] = []

    def subscribe(self, callback: TaskChangeCallback) -> Callable[[], None]:
        """
        Register a callback for task changes.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, task: Task) -> None:
        """Deliver ``task`` to every subscriber once; errors are logged."""
        for callback in list(self._subscribers):
            try:
                outcome = callback(task)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Task change subscriber error: {e}")
