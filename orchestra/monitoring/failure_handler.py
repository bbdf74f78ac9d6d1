"""Failure handler - classifies task failures and drives recovery.

Classification is a fixed keyword table: identical input always yields
identical output, and every error falls into some bucket, with
``unknown`` as the fallback.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from orchestra.core.config import Settings, get_settings
from orchestra.core.exceptions import InvalidTransitionError
from orchestra.monitoring.models import (
    ErrorType,
    FailureAnalysis,
    RecoveryAction,
    RecoveryActionKind,
    Severity,
)
from orchestra.scheduling.models import (
    EventSeverity,
    ProjectEvent,
    Task,
    TaskPriority,
    TaskStatus,
    utcnow,
)

if TYPE_CHECKING:
    from orchestra.persistence.base import TaskStore


# =============================================================================
# CLASSIFICATION TABLES
# =============================================================================

# Checked in order, first match wins
ERROR_KEYWORDS: tuple[tuple[ErrorType, tuple[str, ...]], ...] = (
    (ErrorType.DEPENDENCY, ("dependency", "waiting for")),
    (ErrorType.TIMEOUT, ("timeout", "timed out")),
    (ErrorType.CODE_ERROR, ("syntax error", "compilation", "type error")),
    (ErrorType.INTEGRATION, ("github", "git", "merge conflict")),
)

RECOVERY_ACTIONS: dict[ErrorType, tuple[RecoveryAction, ...]] = {
    ErrorType.DEPENDENCY: (
        RecoveryAction(
            action=RecoveryActionKind.RETRY,
            description="Wait for dependencies to complete, then retry",
            auto_executable=True,
        ),
        RecoveryAction(
            action=RecoveryActionKind.ADJUST_PLAN,
            description="Reorder tasks to remove circular dependencies",
        ),
    ),
    ErrorType.TIMEOUT: (
        RecoveryAction(
            action=RecoveryActionKind.RETRY,
            description="Retry with increased timeout",
            auto_executable=True,
        ),
        RecoveryAction(
            action=RecoveryActionKind.ADJUST_PLAN,
            description="Break task into smaller sub-tasks",
        ),
    ),
    ErrorType.CODE_ERROR: (
        RecoveryAction(
            action=RecoveryActionKind.RETRY,
            description="Regenerate code with corrections",
            auto_executable=True,
        ),
        RecoveryAction(
            action=RecoveryActionKind.MANUAL_INTERVENTION,
            description="Review and fix code manually",
        ),
    ),
    ErrorType.INTEGRATION: (
        RecoveryAction(
            action=RecoveryActionKind.MERGE_CONFLICT_RESOLUTION,
            description="Resolve merge conflicts",
        ),
        RecoveryAction(
            action=RecoveryActionKind.RETRY,
            description="Retry commit to different branch",
            auto_executable=True,
        ),
    ),
    ErrorType.UNKNOWN: (
        RecoveryAction(
            action=RecoveryActionKind.MANUAL_INTERVENTION,
            description="Investigate and resolve manually",
        ),
        RecoveryAction(
            action=RecoveryActionKind.RETRY,
            description="Retry task",
            auto_executable=True,
        ),
    ),
}

SEVERITY_LABELS: dict[Severity, str] = {
    Severity.CRITICAL: "Critical",
    Severity.HIGH: "High",
    Severity.MEDIUM: "Medium",
    Severity.LOW: "Low",
}

ERROR_TYPE_LABELS: dict[ErrorType, str] = {
    ErrorType.DEPENDENCY: "Dependency issue - some prerequisite tasks are not complete",
    ErrorType.TIMEOUT: "Timeout - the task ran for too long",
    ErrorType.CODE_ERROR: "Code error - the generated code has problems",
    ErrorType.INTEGRATION: "Integration issue - committing or merging the code failed",
    ErrorType.UNKNOWN: "Unknown error",
}

ACTION_LABELS: dict[RecoveryActionKind, str] = {
    RecoveryActionKind.RETRY: "Retry",
    RecoveryActionKind.ADJUST_PLAN: "Adjust the plan",
    RecoveryActionKind.MANUAL_INTERVENTION: "Manual intervention",
    RecoveryActionKind.SKIP: "Skip the task",
    RecoveryActionKind.MERGE_CONFLICT_RESOLUTION: "Resolve merge conflicts",
}


# =============================================================================
# PURE HELPERS
# =============================================================================


def classify_error(message: str) -> ErrorType:
    """
    Classify an error message by case-insensitive keyword containment.

    Args:
        message: Raw error message.

    Returns:
        The first matching ErrorType, or ``ErrorType.UNKNOWN``.

    Example:
        >>> classify_error("Connection timed out after 30s")
        <ErrorType.TIMEOUT: 'timeout'>
    """
    lowered = message.lower()
    for error_type, keywords in ERROR_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return error_type
    return ErrorType.UNKNOWN


def assess_severity(error_type: ErrorType, priority: TaskPriority) -> Severity:
    """
    Derive failure severity from task priority and error type.

    High-priority tasks failing on dependencies or integration are critical;
    otherwise severity follows the priority.
    """
    if priority == TaskPriority.HIGH:
        if error_type in (ErrorType.DEPENDENCY, ErrorType.INTEGRATION):
            return Severity.CRITICAL
        return Severity.HIGH
    if priority == TaskPriority.MEDIUM:
        return Severity.MEDIUM
    return Severity.LOW


def generate_recovery_actions(error_type: ErrorType) -> list[RecoveryAction]:
    """Get the ordered recovery actions for an error type."""
    return list(RECOVERY_ACTIONS[error_type])


def _error_message(error: BaseException | str) -> str:
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


# =============================================================================
# FAILURE HANDLER
# =============================================================================


class FailureHandler:
    """
    Analyze failed tasks and apply recovery transitions.

    All status changes go through the task state machine and are persisted
    through the injected store before the caller's Task object is updated.
    Audit events are best-effort: a failing event write is logged and the
    operation carries on.

    Example:
        >>> handler = FailureHandler("proj-1", store)
        >>> analysis = await handler.analyze_failure(task, "Connection timed out")
        >>> analysis.error_type
        <ErrorType.TIMEOUT: 'timeout'>
        >>> await handler.execute_retry(task)
        True
    """

    def __init__(
        self,
        project_id: str,
        store: TaskStore,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize the failure handler.

        Args:
            project_id: Project the handled tasks belong to.
            store: Task store for task updates and audit events.
            settings: Optional settings, defaults to ``get_settings()``.
        """
        self.project_id = project_id
        self.store = store
        self.settings = settings or get_settings()

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    async def analyze_failure(
        self,
        task: Task,
        error: BaseException | str,
    ) -> FailureAnalysis:
        """
        Classify a task failure and propose recovery actions.

        Never raises; also records a ``task_failed`` audit event.

        Args:
            task: The failed task.
            error: The exception raised by the agent, or its message.

        Returns:
            FailureAnalysis for the failure.
        """
        message = _error_message(error)

        try:
            error_type = classify_error(message)
        except Exception as e:
            logger.error(f"Failed to classify error for task {task.id}: {e}")
            error_type = ErrorType.UNKNOWN

        analysis = FailureAnalysis(
            task_id=task.id,
            task_title=task.title,
            error_message=message,
            error_type=error_type,
            severity=assess_severity(error_type, task.priority),
            suggested_actions=tuple(generate_recovery_actions(error_type)),
        )

        logger.warning(
            f"Task '{task.title}' failed ({analysis.error_type.value}, "
            f"{analysis.severity.value}): {message}"
        )

        await self._log_event(
            task,
            "task_failed",
            f'Task "{task.title}" failed',
            details={
                "error": message,
                "error_type": analysis.error_type.value,
                "severity": analysis.severity.value,
            },
            severity=EventSeverity.ERROR,
        )

        return analysis

    # =========================================================================
    # RECOVERY
    # =========================================================================

    async def execute_retry(self, task: Task, max_retries: int | None = None) -> bool:
        """
        Reset a task to ``pending`` for another attempt.

        Args:
            task: Task to retry. Updated in place on success.
            max_retries: Retry limit, defaults to ``orchestra_max_retries``.

        Returns:
            True if the task was reset, False if the retry limit is reached,
            the task is not ``failed``, or it was skipped.

        Raises:
            PersistenceError: If the task update cannot be stored.
        """
        limit = self.settings.orchestra_max_retries if max_retries is None else max_retries

        if task.retry_count >= limit:
            logger.warning(f"Max retries ({limit}) reached for task '{task.title}'")
            return False

        if task.status != TaskStatus.FAILED:
            logger.warning(
                f"Cannot retry task '{task.title}' from status {task.status.value}"
            )
            return False

        if task.skipped:
            logger.warning(f"Task '{task.title}' was skipped and is not retried")
            return False

        attempt = task.retry_count + 1
        logger.info(f"Retrying task '{task.title}' (attempt {attempt}/{limit})")

        await self._apply(
            task,
            {"status": TaskStatus.PENDING, "retry_count": attempt, "error": None},
        )

        await self._log_event(
            task,
            "task_retried",
            f'Retrying task "{task.title}" (attempt {attempt}/{limit})',
            details={"retry_count": attempt, "max_retries": limit},
        )
        return True

    async def record_failure(self, task: Task, error_message: str) -> None:
        """
        Mark a task ``failed`` and store its error message.

        Raises:
            InvalidTransitionError: If the task cannot move to ``failed``.
            PersistenceError: If the task update cannot be stored.
        """
        self._check_transition(task, TaskStatus.FAILED)
        await self._apply(
            task,
            {
                "status": TaskStatus.FAILED,
                "error": error_message,
                "completed_at": utcnow(),
            },
        )

    async def handle_merge_conflict(self, task: Task, conflicting_files: list[str]) -> None:
        """
        Block a task on merge conflicts that need manual resolution.

        Args:
            task: Task whose changes conflict.
            conflicting_files: Paths reported as conflicting.

        Raises:
            InvalidTransitionError: If the task cannot move to ``blocked``.
            PersistenceError: If the task update cannot be stored.
        """
        logger.warning(
            f"Merge conflict for task '{task.title}' in {len(conflicting_files)} files"
        )

        self._check_transition(task, TaskStatus.BLOCKED)
        await self._apply(task, {"status": TaskStatus.BLOCKED})

        await self._log_event(
            task,
            "merge_conflict",
            f'Merge conflict detected for task "{task.title}"',
            details={"conflicting_files": list(conflicting_files)},
            severity=EventSeverity.WARNING,
        )

    async def skip_task(self, task: Task, reason: str) -> None:
        """
        Terminate a task as ``failed`` without satisfying its dependents.

        The task is marked skipped and becomes terminal, so
        ``execute_retry`` refuses it. Skipping it again still records the
        event.

        Raises:
            InvalidTransitionError: If the task is completed or cancelled.
            PersistenceError: If the task update cannot be stored.
        """
        logger.info(f"Skipping task '{task.title}': {reason}")

        self._check_transition(task, TaskStatus.FAILED)
        await self._apply(
            task,
            {"status": TaskStatus.FAILED, "error": f"Skipped: {reason}", "skipped": True},
        )

        await self._log_event(
            task,
            "task_skipped",
            f'Task "{task.title}" skipped: {reason}',
            details={"reason": reason},
            severity=EventSeverity.WARNING,
        )

    # =========================================================================
    # NOTIFICATION
    # =========================================================================

    def generate_notification_message(self, analysis: FailureAnalysis) -> str:
        """
        Format a failure analysis for a human operator.

        Args:
            analysis: Result of ``analyze_failure``.

        Returns:
            Multi-line message with severity, error type and numbered actions.
        """
        lines = [
            f"Task failed: {analysis.task_title}",
            "",
            f"Severity: {SEVERITY_LABELS[analysis.severity]}",
            f"Error type: {ERROR_TYPE_LABELS[analysis.error_type]}",
            "",
            "Suggested actions:",
            "",
        ]

        for index, action in enumerate(analysis.suggested_actions, start=1):
            lines.append(f"{index}. {ACTION_LABELS[action.action]}")
            lines.append(f"   {action.description}")
            if action.auto_executable:
                lines.append("   [auto-executable]")
            lines.append("")

        lines.append("How would you like to proceed?")
        return "\n".join(lines)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _check_transition(self, task: Task, new_status: TaskStatus) -> None:
        if not task.can_transition_to(new_status):
            raise InvalidTransitionError(task.id, task.status.value, new_status.value)

    async def _apply(self, task: Task, patch: dict[str, Any]) -> None:
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
        event = ProjectEvent(
            project_id=self.project_id,
            task_id=task.id,
            event_type=event_type,
            agent_name=task.lead_agent or None,
            message=message,
            details=details or {},
            severity=severity,
        )
        try:
            await self.store.create_event(event)
        except Exception as e:
            logger.error(f"Failed to record {event_type} event for task {task.id}: {e}")
