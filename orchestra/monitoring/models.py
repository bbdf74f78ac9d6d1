"""Models for failure analysis and progress reporting."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from orchestra.scheduling.models import TaskStatus


class ErrorType(str, Enum):
    """Classified cause of a task failure."""

    DEPENDENCY = "dependency"
    TIMEOUT = "timeout"
    CODE_ERROR = "code_error"
    INTEGRATION = "integration"  # source control: push, pull request, merge
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity of a task failure."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryActionKind(str, Enum):
    """What can be done about a failed task."""

    RETRY = "retry"
    ADJUST_PLAN = "adjust_plan"
    MANUAL_INTERVENTION = "manual_intervention"
    SKIP = "skip"
    MERGE_CONFLICT_RESOLUTION = "merge_conflict_resolution"


class RecoveryAction(BaseModel):
    """A suggested recovery step."""

    model_config = ConfigDict(frozen=True)

    action: RecoveryActionKind
    description: str
    auto_executable: bool = False


class FailureAnalysis(BaseModel):
    """Deterministic classification of a task failure."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    task_title: str
    error_message: str
    error_type: ErrorType
    severity: Severity
    suggested_actions: tuple[RecoveryAction, ...] = Field(default_factory=tuple)

    @property
    def auto_actions(self) -> list[RecoveryAction]:
        """Actions that may run without human confirmation."""
        return [a for a in self.suggested_actions if a.auto_executable]


class ProjectProgress(BaseModel):
    """Aggregated completion state of a project."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0
    percentage: int = Field(default=0, ge=0, le=100)


class TaskStatusSnapshot(BaseModel):
    """Per-task status line for progress displays."""

    task_id: str
    title: str
    status: TaskStatus
    progress: int = Field(ge=0, le=100)
