"""Persistence - the task store capability and its implementations."""

from orchestra.persistence.base import TaskStore
from orchestra.persistence.database import Database
from orchestra.persistence.memory import InMemoryTaskStore
from orchestra.persistence.notifier import TaskNotifier
from orchestra.persistence.sql_store import SqlTaskStore

__all__ = [
    "Database",
    "InMemoryTaskStore",
    "SqlTaskStore",
    "TaskNotifier",
    "TaskStore",
]
