"""Worker Registry - routes agent kinds to workers.

The hub never interprets an agent kind; it looks up the worker registered
for it and hands over an invocation.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from delegation_hub.models import AgentKind, Invocation
from delegation_hub.utils.exceptions import DelegationHubError, WorkerNotFoundError

if TYPE_CHECKING:
    from delegation_hub.agents.base import WorkerContext


@runtime_checkable
class WorkerProtocol(Protocol):
    """Protocol defining the required interface for workers."""

    @property
    def kind(self) -> AgentKind:
        """Agent kind served by the worker."""
        ...

    async def run(self, invocation: Invocation, context: WorkerContext) -> Any:
        """Execute one task and return its output payload."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """Perform health check."""
        ...


class WorkerAlreadyRegisteredError(DelegationHubError):
    """Raised when a kind already has a worker."""

    def __init__(self, kind: AgentKind):
        self.kind = kind
        super().__init__(f"Worker already registered for agent kind: {kind.value}")


class WorkerRegistry:
    """Registry mapping each agent kind to one worker."""

    def __init__(self) -> None:
        self._workers: dict[AgentKind, WorkerProtocol] = {}
        self._lock = asyncio.Lock()

    async def register(self, worker: WorkerProtocol, replace: bool = False) -> None:
        """Register a worker for its kind.

        Args:
            worker: The worker to register.
            replace: Replace an existing worker instead of failing.

        Raises:
            WorkerAlreadyRegisteredError: If the kind is taken and
                ``replace`` is False.
        """
        async with self._lock:
            kind = AgentKind(worker.kind)
            if kind in self._workers and not replace:
                raise WorkerAlreadyRegisteredError(kind)
            self._workers[kind] = worker

    async def unregister(self, kind: AgentKind) -> bool:
        """Unregister the worker of a kind.

        Returns:
            True if a worker was removed, False if none was registered.
        """
        async with self._lock:
            return self._workers.pop(AgentKind(kind), None) is not None

    async def get(self, kind: AgentKind) -> WorkerProtocol:
        """Get the worker for a kind.

        Raises:
            WorkerNotFoundError: If no worker serves the kind.
        """
        async with self._lock:
            worker = self._workers.get(AgentKind(kind))
            if worker is None:
                raise WorkerNotFoundError(AgentKind(kind).value)
            return worker

    def kinds(self) -> list[AgentKind]:
        """Registered kinds in declaration order."""
        return [kind for kind in AgentKind if kind in self._workers]

    async def health_check_all(self) -> dict[str, dict[str, Any]]:
        """Perform health check on all registered workers."""
        async with self._lock:
            workers = dict(self._workers)

        results: dict[str, dict[str, Any]] = {}
        for kind, worker in workers.items():
            try:
                results[kind.value] = await worker.health_check()
            except Exception as e:
                results[kind.value] = {
                    "agent_kind": kind.value,
                    "status": "error",
                    "error": str(e),
                }
        return results

    def __len__(self) -> int:
        return len(self._workers)

    def __contains__(self, kind: object) -> bool:
        return kind in self._workers
