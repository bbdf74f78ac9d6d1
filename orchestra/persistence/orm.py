"""SQLAlchemy ORM models for Orchestra persistence."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TaskRow(Base):
    """Task model - one unit of agent work within a project."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_project_status", "project_id", "status"),
    )

    # Surrogate key keeps creation order stable across backends
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        index=True,
        default=lambda: str(uuid4()),
    )
    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[str] = mapped_column(
        Enum("high", "medium", "low", name="task_priority"),
        default="medium",
    )
    lead_agent: Mapped[str] = mapped_column(String(255), default="")
    assigned_agents: Mapped[list] = mapped_column(JSON, default=list)
    dependencies: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(
        Enum(
            "pending", "in_progress", "completed", "failed", "blocked", "cancelled",
            name="task_status",
        ),
        default="pending",
    )
    github_branch: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pull_request_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    estimated_time: Mapped[str] = mapped_column(String(100), default="")
    actual_time: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"TaskRow(id={self.id}, title={self.title}, status={self.status})"


class TaskDependencyRow(Base):
    """Dependency edge - the dependent task waits on the dependency task."""

    __tablename__ = "task_dependencies"
    __table_args__ = (
        UniqueConstraint("dependent_id", "dependency_id", name="unique_dependency"),
        CheckConstraint("dependent_id != dependency_id", name="no_self_dependency"),
        Index("ix_task_deps_project_satisfied", "project_id", "satisfied"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    dependent_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    dependency_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    kind: Mapped[str] = mapped_column(
        Enum("blocks", "requires", "optional", name="dependency_kind"),
        default="blocks",
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    satisfied: Mapped[bool] = mapped_column(Boolean, default=False)
    satisfied_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"TaskDependencyRow({self.dependent_id} -> {self.dependency_id}, "
            f"kind={self.kind}, satisfied={self.satisfied})"
        )


class ProjectEventRow(Base):
    """Audit log entry for project lifecycle events."""

    __tablename__ = "project_events"
    __table_args__ = (
        Index("ix_project_events_project_created", "project_id", "created_at"),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid4()))
    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    agent_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    severity: Mapped[str] = mapped_column(
        Enum("info", "warning", "error", name="event_severity"),
        default="info",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"ProjectEventRow(type={self.event_type}, task={self.task_id})"


class ProjectProgressRow(Base):
    """Latest aggregated progress of a project."""

    __tablename__ = "project_progress"

    project_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    total: Mapped[int] = mapped_column(Integer, default=0)
    completed: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    in_progress: Mapped[int] = mapped_column(Integer, default=0)
    percentage: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
