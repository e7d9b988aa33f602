"""Base Worker - Abstract base class for all workers.

A worker serves one agent kind. The hub hands it an ``Invocation`` plus a
``WorkerContext`` that exposes the kind's durable notes and lets the worker
delegate further work through the hub.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager, nullcontext, suppress
from typing import TYPE_CHECKING, Any

from delegation_hub.models import (
    AgentKind,
    AgentRecord,
    AggregatedResult,
    DelegationRequest,
    ExecutionHandle,
    Invocation,
)
from delegation_hub.utils.exceptions import (
    ExecutionNotFoundError,
    MalformedRequestError,
)
from delegation_hub.utils.logging import LoggerAdapter, get_agent_logger

if TYPE_CHECKING:
    from delegation_hub.core.scheduler import HubScheduler, TaskLease
    from delegation_hub.core.state_store import AgentStateStore


class WorkerContext:
    """Hub-side services available to a worker during one invocation."""

    def __init__(
        self,
        scheduler: HubScheduler,
        store: AgentStateStore,
        invocation: Invocation,
        lease: TaskLease | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._store = store
        self._lease = lease
        self.invocation = invocation

    @property
    def kind(self) -> AgentKind:
        return self.invocation.agent

    async def record(self) -> AgentRecord:
        """Current record of the worker's kind."""
        return await self._store.get(self.kind)

    async def update_notes(self, **notes: Any) -> AgentRecord:
        """Merge notes into the kind's record for later invocations."""
        return await self._store.update_notes(self.kind, **notes)

    async def delegate(self, request: DelegationRequest) -> AggregatedResult:
        """Submit a nested request one level deeper and wait for its result.

        While waiting, the task gives up its kind slot and its share of the
        concurrency limit. The nested request may not target the worker's own
        kind: that kind's record belongs to the delegating task.

        If the wait is cancelled, for instance by the task's timeout, the
        nested execution is cancelled along with its running invocations.

        Raises:
            CompileError: If the nested request is rejected, including
                ``NestingExceededError`` past the maximum depth.
        """
        if any(task.agent == self.kind for task in request.tasks):
            raise MalformedRequestError(
                f"Agent '{self.kind.value}' cannot delegate to its own kind",
                details={"agent_kind": self.kind.value},
            )

        request = request.model_copy(update={"requesting_agent": self.kind})
        parent = ExecutionHandle(
            execution_id=self.invocation.execution_id,
            depth=self.invocation.depth,
        )
        handle = self._scheduler.submit(
            request, parent=parent, parent_task_id=self.invocation.task_id
        )
        async with self._suspended():
            try:
                return await self._scheduler.wait(handle)
            except asyncio.CancelledError:
                # Already finished and evicted if not found
                with suppress(ExecutionNotFoundError):
                    await self._scheduler.cancel(handle, stop_running=True)
                raise

    def _suspended(self) -> AbstractAsyncContextManager[None]:
        if self._lease is None:
            return nullcontext()
        return self._lease.suspended()


class BaseWorker(ABC):
    """Abstract base class for all workers.

    Attributes:
        kind: Agent kind served by the worker.
        name: Display name.
    """

    def __init__(self, kind: AgentKind, name: str | None = None) -> None:
        self._kind = AgentKind(kind)
        self.name = name or f"{self._kind.value} worker"
        self._logger: LoggerAdapter = get_agent_logger(self._kind.value)

    @property
    def kind(self) -> AgentKind:
        return self._kind

    @abstractmethod
    async def run(self, invocation: Invocation, context: WorkerContext) -> Any:
        """Execute one task.

        Args:
            invocation: The task prompt and the outputs of its dependencies.
            context: Access to the kind's notes and to nested delegation.

        Returns:
            The task's output payload. Raising marks the task failed.
        """

    async def health_check(self) -> dict[str, Any]:
        return {
            "agent_kind": self._kind.value,
            "name": self.name,
            "status": "healthy",
        }


WorkerHandler = Callable[[Invocation, WorkerContext], Awaitable[Any]]


class FunctionWorker(BaseWorker):
    """Worker backed by an async callable."""

    def __init__(
        self, kind: AgentKind, handler: WorkerHandler, name: str | None = None
    ) -> None:
        super().__init__(kind, name)
        self._handler = handler

    async def run(self, invocation: Invocation, context: WorkerContext) -> Any:
        return await self._handler(invocation, context)


class EchoWorker(BaseWorker):
    """Default worker that acknowledges its prompt.

    Useful as a stand-in for kinds without a real worker: it returns the
    prompt together with the ids of the dependencies it received, and
    counts its invocations in the kind's notes.
    """

    async def run(self, invocation: Invocation, context: WorkerContext) -> Any:
        record = await context.record()
        count = int(record.notes.get("invocations", 0)) + 1
        await context.update_notes(invocations=count, last_task_id=invocation.task_id)

        self._logger.debug(
            "Echo worker invoked", task_id=invocation.task_id, invocations=count
        )
        return {
            "agent": self._kind.value,
            "prompt": invocation.prompt,
            "dependencies": sorted(invocation.dependencies),
        }
