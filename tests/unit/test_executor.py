"""Unit tests for the phase executor."""

import asyncio

import pytest

from orchestra.core.config import Settings
from orchestra.core.exceptions import SourceControlError
from orchestra.integrations.source_control import SourceControl
from orchestra.monitoring.failure_handler import FailureHandler
from orchestra.persistence.memory import InMemoryTaskStore
from orchestra.scheduling.executor import (
    Agent,
    CancellationToken,
    ExecutionReport,
    PhaseExecutor,
)
from orchestra.scheduling.models import (
    CodeResult,
    GenericResult,
    Task,
    TaskResult,
    TaskStatus,
)
from orchestra.scheduling.planner import persist_plan
from orchestra.scheduling.scheduler import TaskScheduler

# =============================================================================
# FAKES
# =============================================================================


class ScriptedAgent(Agent):
    """Agent that fails with scripted messages per task, then succeeds."""

    def __init__(
        self,
        failures: dict[str, list[str]] | None = None,
        result: TaskResult | None = None,
    ):
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.result = result or GenericResult(data={"ok": True})
        self.calls: list[str] = []

    async def execute(self, task: Task) -> TaskResult:
        self.calls.append(task.id)
        pending = self.failures.get(task.id)
        if pending:
            raise RuntimeError(pending.pop(0))
        return self.result


class AlwaysFailingAgent(Agent):
    def __init__(self, message: str):
        self.message = message
        self.calls = 0

    async def execute(self, task: Task) -> TaskResult:
        self.calls += 1
        raise RuntimeError(self.message)


class SlowAgent(Agent):
    async def execute(self, task: Task) -> TaskResult:
        await asyncio.sleep(10)
        return GenericResult()


class TrackingAgent(Agent):
    """Records the peak number of concurrent executions."""

    def __init__(self):
        self.active = 0
        self.peak = 0

    async def execute(self, task: Task) -> TaskResult:
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return GenericResult()


class CancellingAgent(Agent):
    def __init__(self, token: CancellationToken):
        self.token = token

    async def execute(self, task: Task) -> TaskResult:
        self.token.cancel("Operator abort")
        return GenericResult()


class FakeSourceControl(SourceControl):
    def __init__(self, fail_write: str | None = None, conflicts: list[str] | None = None):
        self.fail_write = fail_write
        self.conflicts = conflicts or []
        self.branches: set[str] = set()
        self.commits: list[tuple[str, dict[str, str], str]] = []
        self.pull_requests: list[tuple[str, str]] = []

    async def branch_exists(self, branch: str) -> bool:
        return branch in self.branches

    async def create_branch(self, branch: str, base: str = "main") -> None:
        self.branches.add(branch)

    async def write_files(self, branch: str, files: dict[str, str], message: str) -> None:
        if self.fail_write:
            raise SourceControlError(self.fail_write)
        self.commits.append((branch, dict(files), message))

    async def create_pull_request(self, branch: str, title: str, body: str) -> str:
        self.pull_requests.append((branch, title))
        return f"https://github.com/acme/shop/pull/{len(self.pull_requests)}"

    async def check_merge_conflicts(self, branch: str) -> bool:
        return bool(self.conflicts)

    async def get_conflicting_files(self, branch: str) -> list[str]:
        return list(self.conflicts)


# =============================================================================
# FIXTURES
# =============================================================================


def make_executor(
    store: InMemoryTaskStore,
    scheduler: TaskScheduler,
    agent: Agent,
    settings: Settings,
    source_control: SourceControl | None = None,
) -> PhaseExecutor:
    handler = FailureHandler("proj-1", store, settings=settings)
    return PhaseExecutor(
        store,
        scheduler,
        handler,
        agent,
        source_control=source_control,
        settings=settings,
    )


async def single_task_scheduler(store: InMemoryTaskStore) -> TaskScheduler:
    planned = await persist_plan(
        store,
        "proj-1",
        [Task(id="solo", title="Create User model", description="User table")],
    )
    scheduler = TaskScheduler(store)
    await scheduler.build_graph(planned)
    scheduler.calculate_phases()
    return scheduler


# =============================================================================
# TESTS
# =============================================================================


class TestPhaseExecutor:
    """Tests for running phases."""

    @pytest.mark.asyncio
    async def test_runs_all_phases(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        settings: Settings,
        project_id: str,
    ) -> None:
        """Test a clean run completes every task in dependency order."""
        agent = ScriptedAgent()
        executor = make_executor(planned_store, scheduler, agent, settings)
        scheduler.calculate_phases()

        report = await executor.execute()

        assert isinstance(report, ExecutionReport)
        assert report.completed_tasks == ["1", "2", "3", "4"]
        assert report.all_completed
        assert agent.calls[0] == "1"
        assert agent.calls[-1] == "4"

        for task in await planned_store.list_tasks(project_id):
            assert task.status == TaskStatus.COMPLETED
            assert task.started_at is not None
            assert task.completed_at is not None
            assert task.result == GenericResult(data={"ok": True})

        assert scheduler.get_statistics().completed == 4
        event_types = [e.event_type for e in await planned_store.list_events(project_id)]
        assert event_types.count("task_completed") == 4

    @pytest.mark.asyncio
    async def test_failed_dependency_blocks_dependents(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        settings: Settings,
    ) -> None:
        """Test dependents of a failed task are blocked, not started."""
        agent = ScriptedAgent(failures={"1": ["Segmentation fault"]})
        executor = make_executor(planned_store, scheduler, agent, settings)

        report = await executor.execute(scheduler.calculate_phases())

        assert report.failed_tasks == ["1"]
        assert report.blocked_tasks == ["2", "3", "4"]
        assert agent.calls == ["1"]
        assert (await planned_store.get_task("1")).error == "Segmentation fault"
        assert (await planned_store.get_task("4")).status == TaskStatus.BLOCKED

    @pytest.mark.asyncio
    async def test_auto_retry_recovers(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        settings: Settings,
    ) -> None:
        """Test a retryable failure is retried and then completes."""
        agent = ScriptedAgent(failures={"2": ["Connection timed out after 30s"]})
        executor = make_executor(planned_store, scheduler, agent, settings)

        report = await executor.execute(scheduler.calculate_phases())

        assert report.all_completed
        result = next(r for p in report.phases for r in p.results if r.task_id == "2")
        assert result.attempts == 2
        assert (await planned_store.get_task("2")).retry_count == 1

    @pytest.mark.asyncio
    async def test_retries_are_bounded(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        settings: Settings,
    ) -> None:
        agent = AlwaysFailingAgent("Connection timed out")
        executor = make_executor(planned_store, scheduler, agent, settings)

        phase_result = await executor.execute_phase(scheduler.calculate_phases()[0])

        assert agent.calls == 4
        assert phase_result.failed_tasks == ["1"]
        assert phase_result.results[0].attempts == 4
        stored = await planned_store.get_task("1")
        assert stored.retry_count == 3
        assert stored.status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_auto_retry_disabled(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
    ) -> None:
        settings = Settings(orchestra_auto_retry=False)
        agent = AlwaysFailingAgent("Connection timed out")
        executor = make_executor(planned_store, scheduler, agent, settings)

        await executor.execute_phase(scheduler.calculate_phases()[0])

        assert agent.calls == 1

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_timeout(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        project_id: str,
    ) -> None:
        settings = Settings(orchestra_task_timeout=1, orchestra_auto_retry=False)
        executor = make_executor(planned_store, scheduler, SlowAgent(), settings)

        phase_result = await executor.execute_phase(scheduler.calculate_phases()[0])

        assert phase_result.results[0].error == "Task timed out after 1 seconds"
        assert phase_result.failed_tasks == ["1"]
        failure = next(
            e for e in await planned_store.list_events(project_id)
            if e.event_type == "task_failed"
        )
        assert failure.details["error_type"] == "timeout"

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, settings: Settings) -> None:
        """Test no more than orchestra_max_parallel_tasks run at once."""
        store = InMemoryTaskStore()
        planned = await persist_plan(
            store,
            "proj-1",
            [Task(id=str(i), title=f"Task {i}") for i in range(5)],
        )
        scheduler = TaskScheduler(store)
        await scheduler.build_graph(planned)
        agent = TrackingAgent()
        executor = make_executor(store, scheduler, agent, settings)

        report = await executor.execute(scheduler.calculate_phases())

        assert len(report.completed_tasks) == 5
        assert agent.peak == settings.orchestra_max_parallel_tasks

    @pytest.mark.asyncio
    async def test_non_pending_task_not_run(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        settings: Settings,
    ) -> None:
        agent = ScriptedAgent()
        executor = make_executor(planned_store, scheduler, agent, settings)
        task = scheduler.get_node("1").task
        task.status = TaskStatus.COMPLETED

        result = await executor.execute_task(task)

        assert result.status == TaskStatus.COMPLETED
        assert agent.calls == []


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        settings: Settings,
    ) -> None:
        token = CancellationToken()
        token.cancel()
        agent = ScriptedAgent()
        executor = make_executor(planned_store, scheduler, agent, settings)

        report = await executor.execute(scheduler.calculate_phases(), token)

        assert report.cancelled is True
        assert report.cancelled_tasks == ["1", "2", "3", "4"]
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_running_task_finishes_rest_cancelled(
        self,
        scheduler: TaskScheduler,
        planned_store: InMemoryTaskStore,
        settings: Settings,
    ) -> None:
        token = CancellationToken()
        executor = make_executor(planned_store, scheduler, CancellingAgent(token), settings)

        report = await executor.execute(scheduler.calculate_phases(), token)

        assert report.completed_tasks == ["1"]
        assert report.cancelled_tasks == ["2", "3", "4"]
        assert token.reason == "Operator abort"
        assert (await planned_store.get_task("4")).status == TaskStatus.CANCELLED


class TestSourceControlDelivery:
    """Tests for committing code results."""

    @pytest.mark.asyncio
    async def test_code_result_opens_pull_request(self, settings: Settings) -> None:
        store = InMemoryTaskStore()
        scheduler = await single_task_scheduler(store)
        vcs = FakeSourceControl()
        agent = ScriptedAgent(result=CodeResult(files={"src/user.py": "class User: ..."}))
        executor = make_executor(store, scheduler, agent, settings, source_control=vcs)

        report = await executor.execute()

        task = await store.get_task("solo")
        assert report.completed_tasks == ["solo"]
        assert task.github_branch == "task/create-user-model-solo"
        assert task.pull_request_url == "https://github.com/acme/shop/pull/1"
        assert report.phases[0].results[0].pull_request_url == task.pull_request_url
        assert vcs.commits[0][1] == {"src/user.py": "class User: ..."}
        assert vcs.commits[0][2] == "Create User model\n\nUser table"

        event_types = [e.event_type for e in await store.list_events("proj-1")]
        assert "code_committed" in event_types
        assert "pr_created" in event_types

    @pytest.mark.asyncio
    async def test_non_code_result_not_committed(self, settings: Settings) -> None:
        store = InMemoryTaskStore()
        scheduler = await single_task_scheduler(store)
        vcs = FakeSourceControl()
        executor = make_executor(store, scheduler, ScriptedAgent(), settings, source_control=vcs)

        await executor.execute()

        assert vcs.commits == []
        assert (await store.get_task("solo")).pull_request_url is None

    @pytest.mark.asyncio
    async def test_merge_conflict_blocks_task(self, settings: Settings) -> None:
        store = InMemoryTaskStore()
        scheduler = await single_task_scheduler(store)
        vcs = FakeSourceControl(
            fail_write="git push rejected: merge conflict",
            conflicts=["src/user.py"],
        )
        agent = ScriptedAgent(result=CodeResult(files={"src/user.py": "class User: ..."}))
        executor = make_executor(store, scheduler, agent, settings, source_control=vcs)

        report = await executor.execute()

        assert report.blocked_tasks == ["solo"]
        assert (await store.get_task("solo")).status == TaskStatus.BLOCKED
        events = await store.list_events("proj-1")
        assert events[0].event_type == "merge_conflict"
        assert events[0].details["conflicting_files"] == ["src/user.py"]

    @pytest.mark.asyncio
    async def test_integration_failure_without_conflicts(self, settings: Settings) -> None:
        """Test an integration failure is recorded and not auto-retried."""
        store = InMemoryTaskStore()
        scheduler = await single_task_scheduler(store)
        vcs = FakeSourceControl(fail_write="git push rejected")
        agent = ScriptedAgent(result=CodeResult(files={"src/user.py": "..."}))
        executor = make_executor(store, scheduler, agent, settings, source_control=vcs)

        report = await executor.execute()

        assert report.failed_tasks == ["solo"]
        assert agent.calls == ["solo"]
        assert (await store.get_task("solo")).error == "git push rejected"
