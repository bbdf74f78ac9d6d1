"""
Phase executor for Orchestra.

This module runs the phases computed by the scheduler: phases in order,
the tasks of one phase concurrently, with a concurrency limit, a per-task
timeout, cooperative cancellation, and failure recovery through the
failure handler.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from loguru import logger

from orchestra.core.config import Settings, get_settings
from orchestra.core.exceptions import InvalidTransitionError, SourceControlError
from orchestra.integrations.source_control import branch_name_for
from orchestra.monitoring.models import ErrorType, RecoveryActionKind
from orchestra.scheduling.models import (
    CodeResult,
    EventSeverity,
    ExecutionPhase,
    ProjectEvent,
    Task,
    TaskResult,
    TaskStatus,
    utcnow,
)

if TYPE_CHECKING:
    from orchestra.integrations.source_control import SourceControl
    from orchestra.monitoring.failure_handler import FailureHandler
    from orchestra.persistence.base import TaskStore
    from orchestra.scheduling.scheduler import TaskScheduler


# =============================================================================
# AGENT & CANCELLATION
# =============================================================================


class Agent(ABC):
    """Executes a single task and returns its typed result."""

    @abstractmethod
    async def execute(self, task: Task) -> TaskResult:
        """
        Run the task.

        Raises:
            Exception: Any failure; only its message is used for classification.
        """
        ...


class CancellationToken:
    """
    Cooperative cancellation for a whole execution run.

    Tasks already running are allowed to finish; tasks that have not
    started yet are marked ``cancelled``.

    Example:
        >>> token = CancellationToken()
        >>> report_task = asyncio.create_task(executor.execute(phases, token))
        >>> token.cancel("Operator abort")
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason
            logger.warning(f"Execution cancelled{f': {reason}' if reason else ''}")

    @property
    def cancelled(self) -> bool:
        return self._cancelled


# =============================================================================
# RESULT MODELS
# =============================================================================


class TaskExecutionResult:
    """Outcome of running one task, including its automatic retries."""

    def __init__(
        self,
        task_id: str,
        status: TaskStatus,
        error: str | None = None,
        attempts: int = 0,
        duration_seconds: float = 0.0,
        phase_number: int | None = None,
        pull_request_url: str | None = None,
    ):
        self.task_id = task_id
        self.status = status
        self.error = error
        self.attempts = attempts
        self.duration_seconds = duration_seconds
        self.phase_number = phase_number
        self.pull_request_url = pull_request_url

    @property
    def success(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "success": self.success,
            "error": self.error,
            "attempts": self.attempts,
            "duration_seconds": self.duration_seconds,
            "phase_number": self.phase_number,
            "pull_request_url": self.pull_request_url,
        }


class PhaseExecutionResult:
    """Outcome of running every task of one phase."""

    def __init__(self, phase_number: int, results: list[TaskExecutionResult]):
        self.phase_number = phase_number
        self.results = results

    def _ids_with(self, status: TaskStatus) -> list[str]:
        return [r.task_id for r in self.results if r.status == status]

    @property
    def completed_tasks(self) -> list[str]:
        return self._ids_with(TaskStatus.COMPLETED)

    @property
    def failed_tasks(self) -> list[str]:
        return self._ids_with(TaskStatus.FAILED)

    @property
    def blocked_tasks(self) -> list[str]:
        return self._ids_with(TaskStatus.BLOCKED)

    @property
    def cancelled_tasks(self) -> list[str]:
        return self._ids_with(TaskStatus.CANCELLED)

    @property
    def success_rate(self) -> float:
        if not self.results:
            return 0.0
        return len(self.completed_tasks) / len(self.results)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "phase_number": self.phase_number,
            "results": [r.to_dict() for r in self.results],
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "blocked_tasks": self.blocked_tasks,
            "cancelled_tasks": self.cancelled_tasks,
            "success_rate": self.success_rate,
        }


class ExecutionReport:
    """Outcome of a whole execution run."""

    def __init__(self, phases: list[PhaseExecutionResult], cancelled: bool = False):
        self.phases = phases
        self.cancelled = cancelled

    def _collect(self, attribute: str) -> list[str]:
        ids: list[str] = []
        for phase in self.phases:
            ids.extend(getattr(phase, attribute))
        return ids

    @property
    def completed_tasks(self) -> list[str]:
        return self._collect("completed_tasks")

    @property
    def failed_tasks(self) -> list[str]:
        return self._collect("failed_tasks")

    @property
    def blocked_tasks(self) -> list[str]:
        return self._collect("blocked_tasks")

    @property
    def cancelled_tasks(self) -> list[str]:
        return self._collect("cancelled_tasks")

    @property
    def all_completed(self) -> bool:
        return all(r.success for phase in self.phases for r in phase.results)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "phases": [p.to_dict() for p in self.phases],
            "cancelled": self.cancelled,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "blocked_tasks": self.blocked_tasks,
            "cancelled_tasks": self.cancelled_tasks,
        }


# =============================================================================
# PHASE EXECUTOR
# =============================================================================


class PhaseExecutor:
    """
    Execute scheduled phases with agents.

    ``TaskScheduler.can_task_start`` is consulted before every task, so a
    task whose dependency failed is blocked rather than started, whatever
    phase it sits in.

    Attributes:
        settings: Concurrency limit, timeout and retry policy.

    Example:
        >>> executor = PhaseExecutor(store, scheduler, handler, agent)
        >>> report = await executor.execute(scheduler.calculate_phases())
        >>> print(f"Completed: {len(report.completed_tasks)}")
    """

    def __init__(
        self,
        store: TaskStore,
        scheduler: TaskScheduler,
        failure_handler: FailureHandler,
        agent: Agent,
        source_control: SourceControl | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the phase executor.

        Args:
            store: Task store for status updates and events.
            scheduler: Scheduler whose graph the phases came from.
            failure_handler: Handler for failed tasks.
            agent: Agent that executes tasks.
            source_control: Optional backend that receives code results.
            settings: Optional settings, defaults to ``get_settings()``.
        """
        self.store = store
        self.scheduler = scheduler
        self.failure_handler = failure_handler
        self.agent = agent
        self.source_control = source_control
        self.settings = settings or get_settings()
        self._semaphore = asyncio.Semaphore(self.settings.orchestra_max_parallel_tasks)

    async def execute(
        self,
        phases: list[ExecutionPhase] | None = None,
        token: CancellationToken | None = None,
    ) -> ExecutionReport:
        """
        Execute phases in order.

        Args:
            phases: Phases to run, defaults to the scheduler's last phases.
            token: Optional cancellation token.

        Returns:
            ExecutionReport with a result per phase.
        """
        phases = self.scheduler.get_phases() if phases is None else phases
        token = token or CancellationToken()

        logger.info(f"Executing {len(phases)} phases")

        results: list[PhaseExecutionResult] = []
        for phase in phases:
            results.append(await self.execute_phase(phase, token))

        report = ExecutionReport(phases=results, cancelled=token.cancelled)
        logger.info(
            f"Execution finished: {len(report.completed_tasks)} completed, "
            f"{len(report.failed_tasks)} failed, {len(report.blocked_tasks)} blocked, "
            f"{len(report.cancelled_tasks)} cancelled"
        )
        return report

    async def execute_phase(
        self,
        phase: ExecutionPhase,
        token: CancellationToken | None = None,
    ) -> PhaseExecutionResult:
        """
        Execute all tasks of one phase concurrently.

        Args:
            phase: Phase to run.
            token: Optional cancellation token.

        Returns:
            PhaseExecutionResult with a result per task.
        """
        token = token or CancellationToken()
        tasks = [node.task for node in phase.tasks]

        logger.info(f"Executing phase {phase.phase} with {len(tasks)} tasks")

        coroutines = [self._execute_with_semaphore(task, phase.phase, token) for task in tasks]
        outcomes = await asyncio.gather(*coroutines, return_exceptions=True)

        results: list[TaskExecutionResult] = []
        for task, outcome in zip(tasks, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(f"Unhandled error executing task {task.id}: {outcome}")
                results.append(
                    TaskExecutionResult(
                        task_id=task.id,
                        status=TaskStatus.FAILED,
                        error=str(outcome),
                        phase_number=phase.phase,
                    )
                )
            else:
                results.append(outcome)

        phase_result = PhaseExecutionResult(phase_number=phase.phase, results=results)
        logger.info(
            f"Phase {phase.phase} complete: "
            f"{len(phase_result.completed_tasks)} succeeded, "
            f"{len(phase_result.failed_tasks)} failed"
        )
        return phase_result

    async def _execute_with_semaphore(
        self,
        task: Task,
        phase_number: int,
        token: CancellationToken,
    ) -> TaskExecutionResult:
        async with self._semaphore:
            return await self.execute_task(task, phase_number, token)

    async def execute_task(
        self,
        task: Task,
        phase_number: int | None = None,
        token: CancellationToken | None = None,
    ) -> TaskExecutionResult:
        """
        Execute one task, applying failure recovery and automatic retries.

        Args:
            task: Task to run; updated in place as its status changes.
            phase_number: Phase the task belongs to, for reporting.
            token: Optional cancellation token.

        Returns:
            TaskExecutionResult with the task's final status.
        """
        if token is not None and token.cancelled:
            await self._cancel(task, token.reason)
            return TaskExecutionResult(
                task_id=task.id,
                status=task.status,
                error=token.reason,
                phase_number=phase_number,
            )

        if task.status != TaskStatus.PENDING:
            logger.info(f"Skipping task '{task.title}' in status {task.status.value}")
            return TaskExecutionResult(
                task_id=task.id,
                status=task.status,
                error=task.error,
                phase_number=phase_number,
            )

        if not await self.scheduler.can_task_start(task.id):
            await self._block(task, "Waiting for dependencies")
            return TaskExecutionResult(
                task_id=task.id,
                status=TaskStatus.BLOCKED,
                error="Waiting for dependencies",
                phase_number=phase_number,
            )

        timeout = self.settings.orchestra_task_timeout
        started = utcnow()
        attempts = 0

        while True:
            attempts += 1
            try:
                await self._start(task)
                result = await asyncio.wait_for(self.agent.execute(task), timeout=timeout)
                await self._complete(task, result)
                return TaskExecutionResult(
                    task_id=task.id,
                    status=TaskStatus.COMPLETED,
                    attempts=attempts,
                    duration_seconds=(utcnow() - started).total_seconds(),
                    phase_number=phase_number,
                    pull_request_url=task.pull_request_url,
                )
            except asyncio.TimeoutError:
                message = f"Task timed out after {timeout} seconds"
            except Exception as e:
                message = str(e) or type(e).__name__

            if not await self._recover(task, message):
                return TaskExecutionResult(
                    task_id=task.id,
                    status=task.status,
                    error=message,
                    attempts=attempts,
                    duration_seconds=(utcnow() - started).total_seconds(),
                    phase_number=phase_number,
                )

    # =========================================================================
    # FAILURE RECOVERY
    # =========================================================================

    async def _recover(self, task: Task, message: str) -> bool:
        """Handle a failed attempt; returns True if the task should run again."""
        analysis = await self.failure_handler.analyze_failure(task, message)

        if analysis.error_type == ErrorType.INTEGRATION:
            conflicting_files = await self._find_conflicts(task)
            if conflicting_files:
                await self.failure_handler.handle_merge_conflict(task, conflicting_files)
                return False

        await self.failure_handler.record_failure(task, message)

        if not self.settings.orchestra_auto_retry or not analysis.suggested_actions:
            return False

        # Only the preferred action may run unattended
        first = analysis.suggested_actions[0]
        if first not in analysis.auto_actions or first.action != RecoveryActionKind.RETRY:
            return False

        return await self.failure_handler.execute_retry(task)

    async def _find_conflicts(self, task: Task) -> list[str]:
        if self.source_control is None or not task.github_branch:
            return []

        try:
            if not await self.source_control.check_merge_conflicts(task.github_branch):
                return []
            return await self.source_control.get_conflicting_files(task.github_branch)
        except SourceControlError as e:
            logger.error(f"Failed to check merge conflicts for task {task.id}: {e}")
            return []

    # =========================================================================
    # STATUS CHANGES
    # =========================================================================

    async def _start(self, task: Task) -> None:
        await self._update(task, {"status": TaskStatus.IN_PROGRESS, "started_at": utcnow()})
        logger.info(f"Starting task '{task.title}'")
        await self._log_event(task, "task_started", f'Task "{task.title}" started')

    async def _complete(self, task: Task, result: TaskResult) -> None:
        patch: dict[str, Any] = {
            "status": TaskStatus.COMPLETED,
            "result": result,
            "error": None,
            "completed_at": utcnow(),
        }
        if task.started_at is not None:
            minutes = round((utcnow() - task.started_at).total_seconds() / 60)
            patch["actual_time"] = f"{minutes}m"

        patch.update(await self._deliver(task, result))

        await self._update(task, patch)
        logger.info(f"Task '{task.title}' completed")
        await self._log_event(task, "task_completed", f'Task "{task.title}" completed')

        await self.scheduler.mark_task_completed(task.id)

    async def _deliver(self, task: Task, result: TaskResult) -> dict[str, Any]:
        """Commit a code result and open a pull request; returns the fields to set."""
        if self.source_control is None or not isinstance(result, CodeResult) or not result.files:
            return {}

        branch = task.github_branch or branch_name_for(task.id, task.title)

        if not await self.source_control.branch_exists(branch):
            await self.source_control.create_branch(branch)

        # Recorded before committing so a conflicting push can be inspected
        if task.github_branch != branch:
            await self._update(task, {"github_branch": branch})

        await self.source_control.write_files(
            branch,
            result.files,
            f"{task.title}\n\n{task.description}".strip(),
        )
        await self._log_event(
            task,
            "code_committed",
            f'Committed {len(result.files)} files for "{task.title}"',
            details={"branch": branch, "files": sorted(result.files)},
        )

        url = await self.source_control.create_pull_request(branch, task.title, task.description)
        await self._log_event(
            task,
            "pr_created",
            f'Pull request opened for "{task.title}"',
            details={"branch": branch, "url": url},
        )

        return {"pull_request_url": url}

    async def _block(self, task: Task, reason: str) -> None:
        await self._update(task, {"status": TaskStatus.BLOCKED})
        logger.info(f"Task '{task.title}' blocked: {reason}")
        await self._log_event(
            task,
            "task_blocked",
            f'Task "{task.title}" blocked: {reason}',
            severity=EventSeverity.WARNING,
        )

    async def _cancel(self, task: Task, reason: str | None) -> None:
        if not task.can_transition_to(TaskStatus.CANCELLED):
            return
        await self._update(task, {"status": TaskStatus.CANCELLED})
        await self._log_event(
            task,
            "task_cancelled",
            f'Task "{task.title}" cancelled',
            details={"reason": reason} if reason else None,
            severity=EventSeverity.WARNING,
        )

    async def _update(self, task: Task, patch: dict[str, Any]) -> None:
        new_status = patch.get("status")
        if new_status is not None and not task.can_transition_to(new_status):
            raise InvalidTransitionError(task.id, task.status.value, new_status.value)

        updated = await self.store.update_task(task.id, patch)
        for name in patch:
            setattr(task, name, getattr(updated, name))

    async def _log_event(
        self,
        task: Task,
        event_type: str,
        message: str,
        details: dict[str, Any] | None = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> None:
        try:
            await self.store.create_event(
                ProjectEvent(
                    project_id=task.project_id,
                    task_id=task.id,
                    event_type=event_type,
                    agent_name=task.lead_agent or None,
                    message=message,
                    details=details or {},
                    severity=severity,
                )
            )
        except Exception as e:
            logger.error(f"Failed to record {event_type} event for task {task.id}: {e}")
