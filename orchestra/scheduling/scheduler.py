"""Task scheduler - builds the dependency graph and orders it into phases.

This module provides dependency scheduling for a project's tasks,
including cycle detection, topological phase leveling, critical path
computation, and dependency satisfaction against the task store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from orchestra.core.exceptions import CircularDependencyError
from orchestra.scheduling.models import (
    EdgeUpdate,
    ExecutionPhase,
    Task,
    TaskNode,
    TaskStatistics,
    TaskStatus,
)

if TYPE_CHECKING:
    from orchestra.persistence.base import TaskStore


class TaskScheduler:
    """
    Schedule tasks according to their persisted ``blocks`` dependencies.

    The in-memory graph is a snapshot taken by ``build_graph``; the task
    store stays the source of truth for whether a dependency is satisfied.
    One scheduler instance serves one planning session.

    Example:
        >>> scheduler = TaskScheduler(store)
        >>> await scheduler.build_graph(tasks)
        >>> phases = scheduler.calculate_phases()
        >>> [p.task_ids for p in phases]
        [['setup'], ['models', 'api-client'], ['endpoints']]
    """

    def __init__(self, store: TaskStore) -> None:
        """
        Initialize the scheduler.

        Args:
            store: Task store used for dependency reads and writes.
        """
        self.store = store
        self._nodes: dict[str, TaskNode] = {}
        self._phases: list[ExecutionPhase] = []

    # =========================================================================
    # GRAPH BUILDING
    # =========================================================================

    async def build_graph(self, tasks: list[Task]) -> None:
        """
        Build the dependency graph from tasks and their persisted edges.

        Any previous graph is discarded. Only ``blocks`` edges become graph
        edges; edges to tasks outside ``tasks`` are ignored with a warning.

        Args:
            tasks: The project's tasks.

        Raises:
            PersistenceError: If dependency edges cannot be read.
        """
        self._nodes = {}
        self._phases = []

        task_ids = {task.id for task in tasks}
        nodes: dict[str, TaskNode] = {}

        for task in tasks:
            edges = await self.store.get_task_dependencies(task.id)
            dependencies: list[str] = []

            for edge in edges:
                if not edge.is_blocking:
                    logger.debug(
                        f"Ignoring {edge.kind.value} edge {task.id} -> {edge.dependency_id}"
                    )
                    continue
                if edge.dependency_id not in task_ids:
                    logger.warning(
                        f"Task {task.id} depends on unknown task {edge.dependency_id}, "
                        f"ignoring edge"
                    )
                    continue
                if edge.dependency_id not in dependencies:
                    dependencies.append(edge.dependency_id)

            nodes[task.id] = TaskNode(task=task, dependencies=dependencies)

        # Build reverse edges
        for node_id, node in nodes.items():
            for dependency_id in node.dependencies:
                nodes[dependency_id].dependents.append(node_id)

        self._nodes = nodes
        logger.info(f"Built task graph with {len(nodes)} nodes")

    @property
    def nodes(self) -> dict[str, TaskNode]:
        """Get the graph nodes keyed by task ID."""
        return self._nodes

    def get_node(self, task_id: str) -> TaskNode | None:
        """
        Get a node by task ID.

        Args:
            task_id: Task identifier.

        Returns:
            TaskNode if found, None otherwise.
        """
        return self._nodes.get(task_id)

    # =========================================================================
    # CYCLE DETECTION
    # =========================================================================

    def detect_circular_dependencies(self) -> list[str] | None:
        """
        Detect a dependency cycle using DFS with a recursion stack.

        Returns:
            The first cycle found as a path that starts and ends with the
            same task ID, or None if the graph is acyclic.

        Example:
            >>> scheduler.detect_circular_dependencies()
            ['a', 'b', 'c', 'a']
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        colors: dict[str, int] = {node_id: WHITE for node_id in self._nodes}
        path: list[str] = []

        def dfs(node_id: str) -> list[str] | None:
            colors[node_id] = GRAY
            path.append(node_id)

            for dependency_id in self._nodes[node_id].dependencies:
                if colors[dependency_id] == GRAY:
                    cycle_start = path.index(dependency_id)
                    return path[cycle_start:] + [dependency_id]
                if colors[dependency_id] == WHITE:
                    cycle = dfs(dependency_id)
                    if cycle:
                        return cycle

            path.pop()
            colors[node_id] = BLACK
            return None

        for node_id in self._nodes:
            if colors[node_id] == WHITE:
                cycle = dfs(node_id)
                if cycle:
                    logger.warning(f"Circular dependency detected: {' -> '.join(cycle)}")
                    return cycle

        return None

    # =========================================================================
    # PHASE CALCULATION
    # =========================================================================

    def calculate_phases(self) -> list[ExecutionPhase]:
        """
        Partition the graph into execution phases by topological level.

        Every dependency of a task in phase ``k`` lies in a phase before
        ``k``. Phases are numbered from 1 and tasks keep graph insertion
        order within a phase.

        Returns:
            Ordered list of ExecutionPhase.

        Raises:
            CircularDependencyError: If some tasks can never reach in-degree
                zero. The error carries the stuck task IDs and the phases
                ordered before the cycle was hit.
        """
        in_degree = {node_id: len(node.dependencies) for node_id, node in self._nodes.items()}
        visited: set[str] = set()
        phases: list[ExecutionPhase] = []

        logger.debug(f"Calculating phases for {len(self._nodes)} tasks")

        while len(visited) < len(self._nodes):
            current = [
                node
                for node_id, node in self._nodes.items()
                if node_id not in visited and in_degree[node_id] == 0
            ]

            if not current:
                stuck = [node_id for node_id in self._nodes if node_id not in visited]
                cycle = self.detect_circular_dependencies()
                logger.error(f"Cannot order remaining tasks: {stuck}")
                self._phases = []
                raise CircularDependencyError(
                    f"Circular dependency prevents ordering {len(stuck)} tasks: "
                    f"{', '.join(stuck)}",
                    cycle=cycle,
                    stuck_ids=stuck,
                    phases=phases,
                )

            for node in current:
                visited.add(node.id)
                for dependent_id in node.dependents:
                    in_degree[dependent_id] -= 1

            phases.append(ExecutionPhase(phase=len(phases) + 1, tasks=current))

        self._phases = phases

        for phase in phases:
            logger.debug(
                f"Phase {phase.phase}: {len(phase.tasks)} tasks"
                f"{' (parallel)' if phase.can_run_in_parallel else ''}"
            )
        logger.info(f"Calculated {len(phases)} execution phases")

        return phases

    def get_phases(self) -> list[ExecutionPhase]:
        """Get the phases from the last successful ``calculate_phases`` call."""
        return self._phases

    def get_phase_of(self, task_id: str) -> int | None:
        """
        Get the phase number a task was assigned to.

        Args:
            task_id: Task identifier.

        Returns:
            Phase number, or None if phases were not calculated or the task
            is unknown.
        """
        for phase in self._phases:
            if task_id in phase.task_ids:
                return phase.phase
        return None

    # =========================================================================
    # DEPENDENCY SATISFACTION
    # =========================================================================

    async def can_task_start(self, task_id: str) -> bool:
        """
        Check whether every ``blocks`` dependency of a task is satisfied.

        Reads the task store directly, independent of phase membership.

        Args:
            task_id: Task identifier.

        Returns:
            True if the task has no unsatisfied blocking dependency.
        """
        edges = await self.store.get_task_dependencies(task_id)
        return all(edge.satisfied for edge in edges if edge.is_blocking)

    async def mark_task_completed(self, task_id: str) -> list[EdgeUpdate]:
        """
        Satisfy the edges from every dependent of a completed task.

        Each edge is written independently: a failed write is logged and
        reported, and the remaining edges are still attempted.

        Args:
            task_id: ID of the task that completed.

        Returns:
            One EdgeUpdate per dependent, in graph order.
        """
        node = self._nodes.get(task_id)
        if node is None:
            logger.warning(f"Task {task_id} not found in graph")
            return []

        logger.info(f"Marking task '{node.task.title}' as completed")

        updates: list[EdgeUpdate] = []
        for dependent_id in node.dependents:
            try:
                await self.store.satisfy_dependency(dependent_id, task_id)
                updates.append(
                    EdgeUpdate(dependent_id=dependent_id, dependency_id=task_id, ok=True)
                )
                logger.debug(f"Satisfied dependency {dependent_id} -> {task_id}")
            except Exception as e:
                logger.error(f"Failed to satisfy dependency {dependent_id} -> {task_id}: {e}")
                updates.append(
                    EdgeUpdate(
                        dependent_id=dependent_id,
                        dependency_id=task_id,
                        ok=False,
                        error=str(e),
                    )
                )

        return updates

    async def get_runnable_tasks(self) -> list[TaskNode]:
        """
        Get pending tasks whose blocking dependencies are all satisfied.

        Recomputed from the store on every call.

        Returns:
            Runnable TaskNodes in graph order.
        """
        runnable: list[TaskNode] = []

        for node_id, node in self._nodes.items():
            if node.task.status != TaskStatus.PENDING:
                continue
            if await self.can_task_start(node_id):
                runnable.append(node)

        return runnable

    # =========================================================================
    # CRITICAL PATH
    # =========================================================================

    def get_critical_path(self) -> list[TaskNode]:
        """
        Find the longest dependency chain in the graph, by edge count.

        Used for reporting only, never for scheduling decisions.

        Returns:
            TaskNodes on the critical path, root first.

        Raises:
            CircularDependencyError: If the graph contains a cycle.
        """
        if not self._nodes:
            return []

        cycle = self.detect_circular_dependencies()
        if cycle:
            raise CircularDependencyError(
                f"Circular dependency detected: {' -> '.join(cycle)}",
                cycle=cycle,
            )

        depths: dict[str, int] = {}

        def longest_path(node_id: str) -> int:
            if node_id in depths:
                return depths[node_id]

            dependencies = self._nodes[node_id].dependencies
            depths[node_id] = 1 + max(
                (longest_path(dependency_id) for dependency_id in dependencies),
                default=0,
            )
            return depths[node_id]

        for node_id in self._nodes:
            longest_path(node_id)

        # max() keeps the first node on ties, so the result is deterministic
        current = max(self._nodes, key=lambda node_id: depths[node_id])
        path = [current]

        while self._nodes[current].dependencies:
            current = next(
                dependency_id
                for dependency_id in self._nodes[current].dependencies
                if depths[dependency_id] == depths[current] - 1
            )
            path.append(current)

        return [self._nodes[node_id] for node_id in reversed(path)]

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def get_statistics(self) -> TaskStatistics:
        """
        Count graph tasks by status.

        Returns:
            TaskStatistics with the total and per-status counts.
        """
        counts = {status: 0 for status in TaskStatus}
        for node in self._nodes.values():
            counts[node.task.status] += 1

        return TaskStatistics(
            total=len(self._nodes),
            pending=counts[TaskStatus.PENDING],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
            blocked=counts[TaskStatus.BLOCKED],
            cancelled=counts[TaskStatus.CANCELLED],
        )
