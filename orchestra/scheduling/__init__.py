"""Scheduling - task models, dependency scheduling and planning.

The phase executor lives in ``orchestra.scheduling.executor`` and is not
imported here, since it depends on the monitoring package.
"""

from orchestra.scheduling.models import (
    AnalysisResult,
    CodeResult,
    DependencyKind,
    DocumentationResult,
    EdgeUpdate,
    EventSeverity,
    ExecutionPhase,
    GenericResult,
    ProjectEvent,
    Task,
    TaskDependency,
    TaskNode,
    TaskPriority,
    TaskResult,
    TaskStatistics,
    TaskStatus,
)
from orchestra.scheduling.planner import persist_plan, resolve_dependency_refs
from orchestra.scheduling.scheduler import TaskScheduler

__all__ = [
    # Models
    "AnalysisResult",
    "CodeResult",
    "DependencyKind",
    "DocumentationResult",
    "EdgeUpdate",
    "EventSeverity",
    "ExecutionPhase",
    "GenericResult",
    "ProjectEvent",
    "Task",
    "TaskDependency",
    "TaskNode",
    "TaskPriority",
    "TaskResult",
    "TaskStatistics",
    "TaskStatus",
    # Scheduling
    "TaskScheduler",
    "persist_plan",
    "resolve_dependency_refs",
]
