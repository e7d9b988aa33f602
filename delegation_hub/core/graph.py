"""Task Graph Builder - compiles delegation requests into executable waves.

Validation happens here, before any execution starts: structural
invariants, dependency references, the delegation depth bound and cycle
detection (Kahn's algorithm). A successful compile partitions the tasks
into waves where every task's dependencies lie in strictly earlier waves.
"""

from __future__ import annotations

from collections import deque

from pydantic import BaseModel, Field

from delegation_hub.models import DelegationMode, DelegationRequest, TaskSpec
from delegation_hub.utils.exceptions import (
    CompileError,
    CyclicDependencyError,
    InvalidReferenceError,
    MalformedRequestError,
    NestingExceededError,
)
from delegation_hub.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_DEPTH = 2


class Wave(BaseModel):
    """A set of tasks dispatched together.

    A parallel wave runs its tasks concurrently; a sequential wave holds a
    single task that runs alone.
    """

    index: int = Field(..., description="Position in execution order")
    task_ids: list[str] = Field(..., description="Tasks in declaration order")
    parallel: bool = Field(default=False, description="Run tasks concurrently")
    group: str | None = Field(default=None, description="Parallel group id, if any")


class TaskGraph(BaseModel):
    """A compiled delegation request."""

    request: DelegationRequest
    waves: list[Wave] = Field(default_factory=list)
    depth: int = Field(default=1, description="Delegation depth of this request")

    @property
    def tasks(self) -> list[TaskSpec]:
        return self.request.tasks

    def task(self, task_id: str) -> TaskSpec:
        task = self.request.get_task(task_id)
        if task is None:
            raise KeyError(task_id)
        return task

    def wave_of(self, task_id: str) -> int:
        for wave in self.waves:
            if task_id in wave.task_ids:
                return wave.index
        raise KeyError(task_id)

    def dependents(self, task_id: str) -> list[str]:
        """Transitive dependents of a task, in declaration order."""
        affected = {task_id}
        changed = True
        while changed:
            changed = False
            for task in self.tasks:
                if task.id not in affected and affected.intersection(task.depends_on):
                    affected.add(task.id)
                    changed = True
        return [task.id for task in self.tasks if task.id in affected - {task_id}]


class TaskGraphBuilder:
    """Validates delegation requests and compiles them into task graphs."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH):
        """Initialize the builder.

        Args:
            max_depth: Maximum levels of delegation. A request from an
                external caller has depth 1; a request made by a worker
                while running a depth-d task has depth d + 1.
        """
        self.max_depth = max_depth

    def compile(self, request: DelegationRequest, depth: int = 1) -> TaskGraph:
        """Compile a request into a wave-partitioned graph.

        Args:
            request: The request to compile.
            depth: Delegation depth the request would run at.

        Returns:
            The compiled TaskGraph.

        Raises:
            NestingExceededError: If depth is beyond the configured maximum.
            MalformedRequestError: If structural invariants are violated.
            InvalidReferenceError: If a dependency names an absent task.
            CyclicDependencyError: If the dependency relation has a cycle.
        """
        try:
            if depth > self.max_depth:
                raise NestingExceededError(depth, self.max_depth)
            self._validate(request)
            self._check_acyclic(request)
            waves = self._partition(request)
        except CompileError as e:
            logger.warning(
                "Delegation request rejected",
                kind=e.kind,
                error=e.message,
                requesting_agent=request.requesting_agent.value,
            )
            raise

        logger.debug(
            "Delegation request compiled",
            tasks=len(request.tasks),
            waves=len(waves),
            depth=depth,
        )
        return TaskGraph(request=request, waves=waves, depth=depth)

    def _validate(self, request: DelegationRequest) -> None:
        if not request.tasks:
            raise MalformedRequestError("Delegation request has no tasks")

        if request.mode == DelegationMode.SINGLE and len(request.tasks) != 1:
            raise MalformedRequestError(
                "Single delegation must contain exactly one task",
                details={"tasks": len(request.tasks)},
            )

        ids = request.task_ids()
        duplicates = sorted({task_id for task_id in ids if ids.count(task_id) > 1})
        if duplicates:
            raise MalformedRequestError(
                f"Duplicate task ids: {', '.join(duplicates)}",
                details={"task_ids": duplicates},
            )

        known = set(ids)
        for task in request.tasks:
            for reference in task.depends_on:
                if reference == task.id or reference not in known:
                    raise InvalidReferenceError(task.id, reference)

    def _check_acyclic(self, request: DelegationRequest) -> list[str]:
        """Topologically sort with Kahn's algorithm, stable in declaration order."""
        ids = request.task_ids()
        position = {task_id: i for i, task_id in enumerate(ids)}
        in_degree = {task.id: len(set(task.depends_on)) for task in request.tasks}
        dependents: dict[str, list[str]] = {task_id: [] for task_id in ids}
        for task in request.tasks:
            for dependency in set(task.depends_on):
                dependents[dependency].append(task.id)

        queue = deque(task_id for task_id in ids if in_degree[task_id] == 0)
        order: list[str] = []
        while queue:
            task_id = queue.popleft()
            order.append(task_id)
            for dependent in sorted(dependents[task_id], key=position.__getitem__):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(order) < len(ids):
            remaining = [task_id for task_id in ids if task_id not in set(order)]
            raise CyclicDependencyError(remaining)
        return order

    def _partition(self, request: DelegationRequest) -> list[Wave]:
        """Group ready tasks into waves.

        The first ready task in declaration order decides each wave: ready
        tasks sharing its parallel group join it. In parallel mode,
        ungrouped ready tasks form one implicit group.
        """
        tasks = {task.id: task for task in request.tasks}
        remaining = request.task_ids()
        done: set[str] = set()
        waves: list[Wave] = []

        while remaining:
            ready = [t for t in remaining if set(tasks[t].depends_on) <= done]
            if not ready:
                raise CyclicDependencyError(remaining)
            lead = tasks[ready[0]]

            if lead.parallel_group:
                members = [t for t in ready if tasks[t].parallel_group == lead.parallel_group]
            elif request.mode == DelegationMode.PARALLEL:
                members = [t for t in ready if tasks[t].parallel_group is None]
            else:
                members = [lead.id]

            waves.append(
                Wave(
                    index=len(waves),
                    task_ids=members,
                    parallel=len(members) > 1,
                    group=lead.parallel_group,
                )
            )
            done.update(members)
            remaining = [t for t in remaining if t not in done]

        return waves
