"""
Orchestra - dependency scheduling and failure recovery for multi-agent projects.

Orders a project's tasks into parallel phases, classifies and recovers
from task failures, and tracks project progress.
"""

__version__ = "0.1.0"
__author__ = "Orchestra Team"

from orchestra.monitoring import FailureHandler, ProgressMonitor
from orchestra.scheduling import Task, TaskScheduler, persist_plan

__all__ = [
    "FailureHandler",
    "ProgressMonitor",
    "Task",
    "TaskScheduler",
    "__version__",
    "persist_plan",
]
