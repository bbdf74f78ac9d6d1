"""Monitoring - failure analysis, recovery and progress aggregation."""

from orchestra.monitoring.failure_handler import (
    FailureHandler,
    assess_severity,
    classify_error,
    generate_recovery_actions,
)
from orchestra.monitoring.models import (
    ErrorType,
    FailureAnalysis,
    ProjectProgress,
    RecoveryAction,
    RecoveryActionKind,
    Severity,
    TaskStatusSnapshot,
)
from orchestra.monitoring.progress_monitor import (
    ProgressMonitor,
    format_duration,
    parse_duration,
)

__all__ = [
    "ErrorType",
    "FailureAnalysis",
    "FailureHandler",
    "ProgressMonitor",
    "ProjectProgress",
    "RecoveryAction",
    "RecoveryActionKind",
    "Severity",
    "TaskStatusSnapshot",
    "assess_severity",
    "classify_error",
    "format_duration",
    "generate_recovery_actions",
    "parse_duration",
]
