"""Main CLI entry point using Typer."""

import json
from pathlib import Path
from typing import Any

import anyio
import typer
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from orchestra import __version__
from orchestra.core.config import get_settings
from orchestra.core.exceptions import CircularDependencyError, PersistenceError
from orchestra.core.logging import configure_logging
from orchestra.monitoring.failure_handler import FailureHandler
from orchestra.monitoring.models import Severity
from orchestra.monitoring.progress_monitor import ProgressMonitor
from orchestra.persistence.base import TaskStore
from orchestra.persistence.database import Database
from orchestra.persistence.memory import InMemoryTaskStore
from orchestra.persistence.sql_store import SqlTaskStore
from orchestra.scheduling.models import Task, TaskPriority, TaskStatus
from orchestra.scheduling.planner import persist_plan
from orchestra.scheduling.scheduler import TaskScheduler

app = typer.Typer(
    name="orchestra",
    help="Orchestra - dependency scheduling and failure recovery for agent projects",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

SEVERITY_COLORS = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "green",
}

STATUS_COLORS = {
    TaskStatus.COMPLETED: "green",
    TaskStatus.IN_PROGRESS: "cyan",
    TaskStatus.FAILED: "red",
    TaskStatus.BLOCKED: "yellow",
    TaskStatus.CANCELLED: "dim",
    TaskStatus.PENDING: "white",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]Orchestra[/bold blue] version {__version__}")
        raise typer.Exit()


def load_tasks(path: Path, project_id: str) -> list[Task]:
    """
    Load tasks from a JSON file.

    The file holds either a list of task objects or ``{"tasks": [...]}``.
    Dependencies may reference other tasks by ID or by title.

    Raises:
        typer.Exit: If the file cannot be read or a task is invalid.
    """
    try:
        data: Any = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[bold red]Cannot read {path}: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1) from e

    items = data.get("tasks", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        console.print(f"[bold red]{path} must contain a list of tasks[/bold red]")
        raise typer.Exit(code=1)

    try:
        return [Task.model_validate({**item, "project_id": project_id}) for item in items]
    except (ValidationError, TypeError) as e:
        console.print(f"[bold red]Invalid task definition: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1) from e


async def open_store(database_url: str | None) -> TaskStore:
    """Open a SQL store for ``database_url``, or an in-memory store if None."""
    if database_url is None:
        return InMemoryTaskStore()

    database = Database(database_url)
    await database.init_schema()
    return SqlTaskStore(database)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Log to stderr at the configured level.",
    ),
) -> None:
    """
    Orchestra - order agent tasks into phases and recover from failures.
    """
    if verbose:
        logger.enable("orchestra")
        configure_logging(get_settings(), log_to_file=False)
    else:
        # Silences this package only; sinks owned by the host process stay
        logger.disable("orchestra")


@app.command()
def plan(
    tasks_file: Path = typer.Argument(..., help="JSON file with the project's tasks"),
    project_id: str = typer.Option(
        "default",
        "--project",
        "-p",
        help="Project ID the tasks belong to",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="Persist the plan to this database instead of memory",
    ),
) -> None:
    """
    Order tasks into execution phases and show the critical path.

    Example:
        orchestra plan tasks.json
    """
    tasks = load_tasks(tasks_file, project_id)

    async def do_plan() -> None:
        store = await open_store(database_url)
        try:
            planned = await persist_plan(store, project_id, tasks)

            scheduler = TaskScheduler(store)
            await scheduler.build_graph(planned)

            try:
                phases = scheduler.calculate_phases()
            except CircularDependencyError as e:
                titles = {t.id: t.title for t in planned}
                console.print(
                    f"[bold red]Circular dependency detected:[/bold red] {escape(str(e))}"
                )
                if e.cycle:
                    console.print(
                        "Cycle: " + " -> ".join(titles.get(i, i) for i in e.cycle)
                    )
                console.print(
                    "Stuck tasks: " + ", ".join(titles.get(i, i) for i in e.stuck_ids)
                )
                raise typer.Exit(code=1) from e

            table = Table(title=f"Execution Phases ({len(planned)} tasks)")
            table.add_column("Phase", style="cyan")
            table.add_column("Tasks", style="bold")
            table.add_column("Parallel")

            for phase in phases:
                table.add_row(
                    str(phase.phase),
                    ", ".join(node.task.title for node in phase.tasks),
                    "yes" if phase.can_run_in_parallel else "-",
                )

            console.print(table)

            critical_path = scheduler.get_critical_path()
            console.print(
                "[bold]Critical path:[/bold] "
                + " -> ".join(node.task.title for node in critical_path)
            )
        finally:
            await store.close()

    try:
        anyio.run(do_plan)
    except PersistenceError as e:
        console.print(f"[bold red]Storage error: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1) from e


@app.command()
def analyze(
    error: str = typer.Argument(..., help="Error message of the failed task"),
    priority: TaskPriority = typer.Option(
        TaskPriority.MEDIUM,
        "--priority",
        help="Priority of the failed task",
    ),
    title: str = typer.Option(
        "Task",
        "--title",
        "-t",
        help="Title of the failed task",
    ),
) -> None:
    """
    Classify a task failure and suggest recovery actions.

    Example:
        orchestra analyze "Connection timed out after 30s" --priority high
    """

    async def do_analyze() -> None:
        task = Task(title=title, priority=priority, status=TaskStatus.FAILED)
        handler = FailureHandler("cli", InMemoryTaskStore())

        analysis = await handler.analyze_failure(task, error)

        console.print(
            Panel(
                escape(handler.generate_notification_message(analysis)),
                title=f"[bold]{analysis.error_type.value}[/bold]",
                border_style=SEVERITY_COLORS[analysis.severity],
            )
        )

    anyio.run(do_analyze)


@app.command()
def estimate(
    tasks_file: Path = typer.Argument(..., help="JSON file with tasks and their statuses"),
    project_id: str = typer.Option(
        "default",
        "--project",
        "-p",
        help="Project ID the tasks belong to",
    ),
) -> None:
    """
    Show project progress and the estimated time remaining.

    Example:
        orchestra estimate tasks.json
    """
    tasks = load_tasks(tasks_file, project_id)

    async def do_estimate() -> None:
        store = InMemoryTaskStore()
        await store.save_tasks(tasks)

        monitor = ProgressMonitor(project_id, store)
        progress = await monitor.get_progress()
        remaining = await monitor.get_estimated_time_remaining()

        table = Table(title="Task Status")
        table.add_column("Task", style="bold")
        table.add_column("Status")
        table.add_column("Progress", justify="right")

        for snapshot in await monitor.get_task_statuses():
            color = STATUS_COLORS[snapshot.status]
            table.add_row(
                snapshot.title,
                f"[{color}]{snapshot.status.value}[/{color}]",
                f"{snapshot.progress}%",
            )

        console.print(table)
        console.print(
            f"[bold]Progress:[/bold] {progress.percentage}% "
            f"({progress.completed}/{progress.total} completed, "
            f"{progress.in_progress} in progress, {progress.failed} failed)"
        )
        console.print(f"[bold]Estimated time remaining:[/bold] {remaining}")

    anyio.run(do_estimate)


if __name__ == "__main__":
    app()
