"""Pytest configuration and shared fixtures."""

import os
from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ORCHESTRA_LOG_LEVEL", "DEBUG")
os.environ.setdefault("ORCHESTRA_MAX_RETRIES", "3")

from orchestra.core.config import Settings, clear_settings_cache  # noqa: E402
from orchestra.persistence.memory import InMemoryTaskStore  # noqa: E402
from orchestra.persistence.notifier import TaskNotifier  # noqa: E402
from orchestra.scheduling.models import Task, TaskPriority  # noqa: E402
from orchestra.scheduling.planner import persist_plan  # noqa: E402
from orchestra.scheduling.scheduler import TaskScheduler  # noqa: E402

PROJECT_ID = "proj-1"


@pytest.fixture
def mock_settings() -> Generator:
    """Clear cached settings around a test."""
    clear_settings_cache()

    yield

    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Provide explicit settings for components under test."""
    return Settings(
        orchestra_max_retries=3,
        orchestra_max_parallel_tasks=2,
        orchestra_task_timeout=5,
        orchestra_auto_retry=True,
    )


@pytest.fixture
def project_id() -> str:
    return PROJECT_ID


@pytest.fixture
def notifier() -> TaskNotifier:
    return TaskNotifier()


@pytest.fixture
def store(notifier: TaskNotifier) -> InMemoryTaskStore:
    """Provide an in-memory task store wired to the notifier."""
    return InMemoryTaskStore(notifier=notifier)


@pytest.fixture
def sample_tasks() -> list[Task]:
    """
    Provide a diamond-shaped plan.

    Task 1 has no dependencies, tasks 2 and 3 depend on 1, task 4 depends
    on 2 and 3.
    """
    return [
        Task(
            id="1",
            project_id=PROJECT_ID,
            title="Initialize project",
            description="Set up project structure",
            priority=TaskPriority.HIGH,
            lead_agent="alex",
            assigned_agents=["alex"],
            estimated_time="1 hour",
        ),
        Task(
            id="2",
            project_id=PROJECT_ID,
            title="Create User model",
            description="Define the User table",
            priority=TaskPriority.MEDIUM,
            lead_agent="alex",
            assigned_agents=["alex"],
            dependencies=["1"],
            estimated_time="2-3 hours",
        ),
        Task(
            id="3",
            project_id=PROJECT_ID,
            title="Create Todo model",
            description="Define the Todo table",
            priority=TaskPriority.MEDIUM,
            lead_agent="emma",
            assigned_agents=["emma"],
            dependencies=["1"],
            estimated_time="30m",
        ),
        Task(
            id="4",
            project_id=PROJECT_ID,
            title="Create API endpoints",
            description="Implement REST endpoints",
            priority=TaskPriority.LOW,
            lead_agent="emma",
            assigned_agents=["alex", "emma"],
            dependencies=["2", "3"],
            estimated_time="4-6 hours",
        ),
    ]


@pytest_asyncio.fixture
async def planned_store(
    store: InMemoryTaskStore,
    sample_tasks: list[Task],
) -> AsyncGenerator[InMemoryTaskStore, None]:
    """Provide a store holding the sample plan and its dependency edges."""
    await persist_plan(store, PROJECT_ID, sample_tasks)

    yield store


@pytest_asyncio.fixture
async def scheduler(planned_store: InMemoryTaskStore) -> TaskScheduler:
    """Provide a scheduler with the sample plan's graph built."""
    scheduler = TaskScheduler(planned_store)
    await scheduler.build_graph(await planned_store.list_tasks(PROJECT_ID))
    return scheduler


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
