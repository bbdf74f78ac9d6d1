"""Pydantic models for task scheduling.

This module defines the data structures shared by the scheduler, the
failure handler, and the progress monitor: tasks and their status state
machine, typed result payloads, persisted dependency edges, and the
graph nodes and execution phases the scheduler derives from them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from orchestra.core.exceptions import InvalidTransitionError


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority level."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DependencyKind(str, Enum):
    """Kind of a persisted dependency edge.

    Only ``BLOCKS`` edges gate scheduling; ``REQUIRES`` and ``OPTIONAL``
    are informational.
    """

    BLOCKS = "blocks"
    REQUIRES = "requires"
    OPTIONAL = "optional"


# =============================================================================
# STATE MACHINE
# =============================================================================


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.IN_PROGRESS,
        TaskStatus.BLOCKED,
        TaskStatus.CANCELLED,
        TaskStatus.FAILED,
    }),
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.BLOCKED,
        TaskStatus.CANCELLED,
    }),
    TaskStatus.FAILED: frozenset({
        TaskStatus.PENDING,
        TaskStatus.FAILED,
    }),
    TaskStatus.BLOCKED: frozenset({
        TaskStatus.PENDING,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    }),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

# A skipped task is also terminal although its status is failed, see Task.is_terminal
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


def can_transition(current: TaskStatus, requested: TaskStatus) -> bool:
    """Check whether the state machine allows ``current -> requested``."""
    return requested in ALLOWED_TRANSITIONS[current]


# =============================================================================
# RESULT PAYLOADS
# =============================================================================


class CodeResult(BaseModel):
    """Source code produced by an agent."""

    kind: Literal["code"] = "code"
    code: str = ""
    files: dict[str, str] = Field(
        default_factory=dict,
        description="File path -> file content",
    )
    tests: list[str] = Field(default_factory=list)


class DocumentationResult(BaseModel):
    """Documentation produced by an agent."""

    kind: Literal["documentation"] = "documentation"
    content: str


class AnalysisResult(BaseModel):
    """Analysis (requirements, architecture review, ...) produced by an agent."""

    kind: Literal["analysis"] = "analysis"
    summary: str
    findings: list[str] = Field(default_factory=list)


class GenericResult(BaseModel):
    """Fallback for unstructured agent output."""

    kind: Literal["generic"] = "generic"
    data: dict[str, Any] = Field(default_factory=dict)


TaskResult = Annotated[
    CodeResult | DocumentationResult | AnalysisResult | GenericResult,
    Field(discriminator="kind"),
]


# =============================================================================
# TASK
# =============================================================================


class Task(BaseModel):
    """A unit of agent-executable work.

    Example:
        >>> task = Task(
        ...     title="Create User model",
        ...     description="Define the User table and repository",
        ...     priority=TaskPriority.HIGH,
        ...     lead_agent="alex",
        ...     assigned_agents=["alex"],
        ... )
        >>> task.status
        <TaskStatus.PENDING: 'pending'>
    """

    model_config = ConfigDict(frozen=False)

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique task identifier",
    )
    project_id: str = Field(
        default="",
        description="Owning project",
    )
    title: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Task title",
    )
    description: str = Field(
        default="",
        description="Detailed task description",
    )
    priority: TaskPriority = Field(
        default=TaskPriority.MEDIUM,
        description="Task priority",
    )

    # Assignment
    lead_agent: str = Field(
        default="",
        description="Agent responsible for the task",
    )
    assigned_agents: list[str] = Field(
        default_factory=list,
        description="All agents assigned to the task",
    )

    # Declared dependencies (persisted as edges by the planner)
    dependencies: list[str] = Field(
        default_factory=list,
        description="Task IDs (or titles, before planning) this task depends on",
    )

    status: TaskStatus = Field(default=TaskStatus.PENDING)

    # Source control
    github_branch: str | None = Field(default=None)
    pull_request_url: str | None = Field(default=None)

    # Time tracking
    estimated_time: str = Field(
        default="",
        description="Free-form estimate such as '4-6 hours' or '30m'",
    )
    actual_time: str | None = Field(default=None)
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)

    # Outcome
    result: TaskResult | None = Field(default=None)
    error: str | None = Field(default=None)
    retry_count: int = Field(default=0, ge=0)
    skipped: bool = Field(
        default=False,
        description="Terminated by an operator skip; the task is never retried",
    )

    @model_validator(mode="after")
    def _no_self_dependency(self) -> "Task":
        if self.id in self.dependencies:
            raise ValueError(f"Task {self.id} cannot depend on itself")
        return self

    @property
    def is_terminal(self) -> bool:
        """Check whether the task reached a state it never leaves."""
        if self.skipped and self.status == TaskStatus.FAILED:
            return True
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        """Check the state machine, treating a skipped task as terminal.

        Re-skipping keeps a skipped task ``failed``; every other move is refused.
        """
        if self.skipped and self.status == TaskStatus.FAILED:
            return new_status == TaskStatus.FAILED
        return can_transition(self.status, new_status)

    def transition(self, new_status: TaskStatus) -> None:
        """Move to ``new_status`` if the state machine allows it.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(self.id, self.status.value, new_status.value)
        self.status = new_status

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")


# =============================================================================
# DEPENDENCY EDGES
# =============================================================================


class TaskDependency(BaseModel):
    """Persisted, directed dependency edge: ``dependent_id`` waits on ``dependency_id``."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str = Field(default="")
    dependent_id: str = Field(description="ID of the task that waits")
    dependency_id: str = Field(description="ID of the task waited on")
    kind: DependencyKind = Field(default=DependencyKind.BLOCKS)
    description: str | None = Field(default=None)
    satisfied: bool = Field(default=False)
    satisfied_at: datetime | None = Field(default=None)

    @model_validator(mode="after")
    def _no_self_edge(self) -> "TaskDependency":
        if self.dependent_id == self.dependency_id:
            raise ValueError(f"Task {self.dependent_id} cannot depend on itself")
        return self

    @property
    def is_blocking(self) -> bool:
        """Check whether this edge gates scheduling."""
        return self.kind == DependencyKind.BLOCKS


class EdgeUpdate(BaseModel):
    """Outcome of persisting one edge during a best-effort fan-out."""

    model_config = ConfigDict(frozen=True)

    dependent_id: str
    dependency_id: str
    ok: bool
    error: str | None = None


# =============================================================================
# GRAPH
# =============================================================================


class TaskNode(BaseModel):
    """A task with its materialized graph edges.

    ``dependents`` is the reverse of ``dependencies`` across the graph and
    is rebuilt on every ``TaskScheduler.build_graph`` call.
    """

    model_config = ConfigDict(frozen=False)

    task: Task
    dependencies: list[str] = Field(default_factory=list)
    dependents: list[str] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.task.id


class ExecutionPhase(BaseModel):
    """A stage of tasks with no ordering constraints among them."""

    model_config = ConfigDict(frozen=False)

    phase: int = Field(ge=1, description="1-based stage number")
    tasks: list[TaskNode] = Field(default_factory=list)

    @property
    def can_run_in_parallel(self) -> bool:
        """A phase is a parallel opportunity iff it has more than one task."""
        return len(self.tasks) > 1

    @property
    def task_ids(self) -> list[str]:
        return [node.id for node in self.tasks]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "phase": self.phase,
            "task_ids": self.task_ids,
            "can_run_in_parallel": self.can_run_in_parallel,
        }


# =============================================================================
# AUDIT EVENTS
# =============================================================================


class EventSeverity(str, Enum):
    """Severity attached to an audit event."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ProjectEvent(BaseModel):
    """Audit-log entry for a project lifecycle event.

    Common ``event_type`` values: ``task_started``, ``task_completed``,
    ``task_failed``, ``task_retried``, ``task_skipped``, ``task_blocked``,
    ``task_cancelled``, ``merge_conflict``, ``code_committed``, ``pr_created``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    task_id: str | None = None
    event_type: str
    agent_name: str | None = None
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    severity: EventSeverity = EventSeverity.INFO
    created_at: datetime = Field(default_factory=utcnow)


class TaskStatistics(BaseModel):
    """Task counts by status."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    blocked: int = 0
    cancelled: int = 0
