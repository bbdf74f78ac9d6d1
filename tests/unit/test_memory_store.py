"""Unit tests for the in-memory task store and the notifier."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from orchestra.core.exceptions import PersistenceError
from orchestra.monitoring.models import ProjectProgress
from orchestra.persistence.memory import InMemoryTaskStore
from orchestra.persistence.notifier import TaskNotifier
from orchestra.scheduling.models import (
    CodeResult,
    ProjectEvent,
    Task,
    TaskDependency,
    TaskStatus,
)


class TestInMemoryTaskStore:
    """Tests for InMemoryTaskStore."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, store: InMemoryTaskStore) -> None:
        task = Task(id="t1", project_id="p", title="Build")
        await store.save_tasks([task])

        loaded = await store.get_task("t1")

        assert loaded == task
        assert loaded is not task
        assert await store.get_task("missing") is None

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, store: InMemoryTaskStore) -> None:
        await store.save_tasks([Task(id="t1", project_id="p", title="Build")])

        loaded = await store.get_task("t1")
        loaded.status = TaskStatus.FAILED

        assert (await store.get_task("t1")).status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_list_tasks_by_project(self, store: InMemoryTaskStore) -> None:
        await store.save_tasks([
            Task(id="a", project_id="p", title="A"),
            Task(id="b", project_id="q", title="B"),
            Task(id="c", project_id="p", title="C"),
        ])

        assert [t.id for t in await store.list_tasks("p")] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_update_task(self, store: InMemoryTaskStore) -> None:
        await store.save_tasks([Task(id="t1", project_id="p", title="Build")])

        updated = await store.update_task(
            "t1",
            {"status": TaskStatus.COMPLETED, "result": CodeResult(code="print('hi')")},
        )

        assert updated.status == TaskStatus.COMPLETED
        assert isinstance(updated.result, CodeResult)
        assert (await store.get_task("t1")).result.code == "print('hi')"

    @pytest.mark.asyncio
    async def test_update_errors(self, store: InMemoryTaskStore) -> None:
        await store.save_tasks([Task(id="t1", project_id="p", title="Build")])

        with pytest.raises(PersistenceError, match="not found"):
            await store.update_task("missing", {"status": TaskStatus.FAILED})
        with pytest.raises(PersistenceError, match="Unknown task fields"):
            await store.update_task("t1", {"colour": "blue"})
        with pytest.raises(PersistenceError, match="Invalid update"):
            await store.update_task("t1", {"retry_count": -1})

    @pytest.mark.asyncio
    async def test_update_publishes(
        self,
        store: InMemoryTaskStore,
        notifier: TaskNotifier,
    ) -> None:
        received: list[Task] = []
        notifier.subscribe(received.append)
        await store.save_tasks([Task(id="t1", project_id="p", title="Build")])

        await store.update_task("t1", {"status": TaskStatus.IN_PROGRESS})

        assert [(t.id, t.status) for t in received] == [("t1", TaskStatus.IN_PROGRESS)]

    @pytest.mark.asyncio
    async def test_dependency_edges(self, store: InMemoryTaskStore) -> None:
        edge = TaskDependency(project_id="p", dependent_id="b", dependency_id="a")
        await store.create_task_dependency(edge)

        with pytest.raises(PersistenceError, match="already exists"):
            await store.create_task_dependency(
                TaskDependency(project_id="p", dependent_id="b", dependency_id="a")
            )

        await store.satisfy_dependency("b", "a")
        first = (await store.get_task_dependencies("b"))[0]
        await store.satisfy_dependency("b", "a")
        second = (await store.get_task_dependencies("b"))[0]

        assert first.satisfied is True
        assert first.satisfied_at == second.satisfied_at
        assert await store.get_task_dependencies("a") == []

        with pytest.raises(PersistenceError):
            await store.satisfy_dependency("a", "b")

    @pytest.mark.asyncio
    async def test_events_newest_first(self, store: InMemoryTaskStore) -> None:
        for i in range(3):
            await store.create_event(ProjectEvent(project_id="p", event_type=f"e{i}", message="m"))
        await store.create_event(ProjectEvent(project_id="q", event_type="other", message="m"))

        events = await store.list_events("p", limit=2)

        assert [e.event_type for e in events] == ["e2", "e1"]

    @pytest.mark.asyncio
    async def test_project_progress(self, store: InMemoryTaskStore) -> None:
        assert await store.get_project_progress("p") is None

        progress = ProjectProgress(total=4, completed=1, percentage=25)
        await store.update_project_progress("p", progress)

        assert await store.get_project_progress("p") == progress


class TestTaskNotifier:
    """Tests for TaskNotifier."""

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self, notifier: TaskNotifier) -> None:
        sync_callback = MagicMock()
        async_callback = AsyncMock()
        notifier.subscribe(sync_callback)
        notifier.subscribe(async_callback)
        task = Task(title="Build")

        await notifier.publish(task)

        sync_callback.assert_called_once_with(task)
        async_callback.assert_awaited_once_with(task)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, notifier: TaskNotifier) -> None:
        callback = MagicMock()
        unsubscribe = notifier.subscribe(callback)

        unsubscribe()
        unsubscribe()
        await notifier.publish(Task(title="Build"))

        callback.assert_not_called()
        assert notifier.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_others(
        self,
        notifier: TaskNotifier,
    ) -> None:
        notifier.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        healthy = MagicMock()
        notifier.subscribe(healthy)

        await notifier.publish(Task(title="Build"))

        healthy.assert_called_once()
