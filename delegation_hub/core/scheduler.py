"""Hub Scheduler - Central coordinator for delegated work.

This module walks compiled task graphs wave by wave, dispatches worker
invocations (concurrently within parallel waves), records every task
transition in the agent state store and hands finished executions to the
result aggregator.

Task lifecycle::

    pending -> ready -> running -> succeeded
                                \\-> failed (worker_error | timeout)
    pending -> failed (upstream_failure | cancelled)

A task's failure is recorded, never raised: dependents are marked
``upstream_failure`` without running and independent branches continue.
Only compile errors surface from ``submit()``.

A task that delegates hands back its kind slot and its concurrency permit
while it waits for the nested execution, and takes them again before its
worker resumes. Finished executions stay available for lookups until more
than ``max_retained_executions`` have piled up; the oldest go first.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from delegation_hub.agents.base import WorkerContext
from delegation_hub.models import (
    AgentRecord,
    AgentStatus,
    AggregatedResult,
    DelegationRequest,
    ExecutionHandle,
    ExecutionSnapshot,
    FailureReason,
    Invocation,
    TaskOutcome,
    TaskSpec,
    TaskState,
)
from delegation_hub.utils.config import SchedulerConfig
from delegation_hub.utils.exceptions import (
    ExecutionNotFoundError,
    TaskTimeoutError,
    WorkerNotFoundError,
)
from delegation_hub.utils.logging import LoggerAdapter, get_execution_logger

from .aggregator import ResultAggregator
from .graph import TaskGraph, TaskGraphBuilder
from .registry import WorkerRegistry
from .state_store import AgentStateStore


class ExecutionContext:
    """State of one in-flight delegation request.

    Owned by the scheduler and never shared between requests.
    """

    def __init__(
        self,
        graph: TaskGraph,
        parent_id: str | None = None,
        parent_task_id: str | None = None,
    ) -> None:
        self.execution_id = str(uuid4())
        self.graph = graph
        self.parent_id = parent_id
        self.parent_task_id = parent_task_id
        self.outcomes: dict[str, TaskOutcome] = {
            task.id: TaskOutcome(task_id=task.id, agent=task.agent)
            for task in graph.tasks
        }
        self.cancelled = False
        self.finished = asyncio.Event()
        self.runner: asyncio.Task[None] | None = None
        self.logger: LoggerAdapter = get_execution_logger(
            self.execution_id,
            requesting_agent=graph.request.requesting_agent.value,
            depth=graph.depth,
        )

    @property
    def depth(self) -> int:
        return self.graph.depth

    @property
    def request(self) -> DelegationRequest:
        return self.graph.request

    def is_complete(self) -> bool:
        return all(outcome.state.is_terminal for outcome in self.outcomes.values())

    def handle(self) -> ExecutionHandle:
        return ExecutionHandle(execution_id=self.execution_id, depth=self.depth)

    def snapshot(self) -> ExecutionSnapshot:
        return ExecutionSnapshot(
            execution_id=self.execution_id,
            requesting_agent=self.request.requesting_agent,
            return_to=self.request.return_to,
            depth=self.depth,
            parent_id=self.parent_id,
            cancelled=self.cancelled,
            finished=self.finished.is_set(),
            tasks=[self.outcomes[task.id].model_copy() for task in self.graph.tasks],
        )


def _set_status(
    status: AgentStatus, task_id: str | None = None
) -> Callable[[AgentRecord], None]:
    def mutate(record: AgentRecord) -> None:
        record.status = status
        record.current_task_id = task_id

    return mutate


def _set_blocked(record: AgentRecord) -> None:
    # A running task of the same kind keeps its view of the record
    if record.status != AgentStatus.RUNNING:
        record.status = AgentStatus.BLOCKED
        record.current_task_id = None


class TaskLease:
    """The kind slot and the global permit held by one running task.

    A task that delegates gives both back while it waits for nested
    executions, so nested tasks and other requests can use them. It takes
    them again, slot first, before its worker continues. Suspensions nest:
    only the last one to end reacquires.
    """

    def __init__(
        self, store: AgentStateStore, semaphore: asyncio.Semaphore, task: TaskSpec
    ) -> None:
        self.task = task
        self._store = store
        self._slot = store.slot_lock(task.agent)
        self._semaphore = semaphore
        self._slot_held = False
        self._permit_held = False
        self._suspensions = 0
        self._closed = False

    @property
    def held(self) -> bool:
        return self._slot_held and self._permit_held

    async def acquire(self) -> None:
        await self._slot.acquire()
        self._slot_held = True
        await self._semaphore.acquire()
        self._permit_held = True

    def release(self) -> None:
        if self._permit_held:
            self._permit_held = False
            self._semaphore.release()
        if self._slot_held:
            self._slot_held = False
            self._slot.release()

    def close(self) -> None:
        """Release for good; a suspension still open will not reacquire."""
        self._closed = True
        self.release()

    @asynccontextmanager
    async def suspended(self) -> AsyncIterator[None]:
        """Release for the duration of the block, then reacquire.

        Another task of the same kind may run meanwhile, so on a normal exit
        the record is marked running for this task again.
        """
        self._suspensions += 1
        self.release()
        try:
            yield
        finally:
            self._suspensions -= 1
            if self._suspensions == 0 and not self._closed:
                await self.acquire()
                if self._closed:
                    self.release()
        if self.held:
            await self._store.update(
                self.task.agent, _set_status(AgentStatus.RUNNING, self.task.id)
            )


class HubScheduler:
    """Coordinator that executes delegation requests.

    One instance per process. It is the only writer of agent lifecycle
    status in the state store.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        store: AgentStateStore,
        builder: TaskGraphBuilder | None = None,
        aggregator: ResultAggregator | None = None,
        max_concurrency: int = 16,
        default_task_timeout: float | None = None,
        max_retained_executions: int = 256,
    ):
        """Initialize the scheduler.

        Args:
            registry: Routes agent kinds to workers.
            store: Agent state store (records and per-kind slots).
            builder: Graph builder; its ``max_depth`` bounds nesting.
            aggregator: Result aggregator.
            max_concurrency: Global cap on in-flight invocations.
            default_task_timeout: Deadline for tasks without their own.
            max_retained_executions: Finished executions kept for lookups;
                the oldest are dropped first.
        """
        self.registry = registry
        self.store = store
        self.builder = builder or TaskGraphBuilder()
        self.aggregator = aggregator or ResultAggregator()
        self.default_task_timeout = default_task_timeout
        self.max_retained_executions = max_retained_executions
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._executions: dict[str, ExecutionContext] = {}
        # parent execution id -> nested execution ids
        self._children: dict[str, list[str]] = {}
        self._runners: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(
        cls,
        config: SchedulerConfig,
        registry: WorkerRegistry,
        store: AgentStateStore,
    ) -> HubScheduler:
        return cls(
            registry=registry,
            store=store,
            builder=TaskGraphBuilder(max_depth=config.max_depth),
            max_concurrency=config.max_concurrency,
            default_task_timeout=config.default_task_timeout,
            max_retained_executions=config.max_retained_executions,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def submit(
        self,
        request: DelegationRequest,
        parent: ExecutionHandle | None = None,
        parent_task_id: str | None = None,
    ) -> ExecutionHandle:
        """Compile a request and start executing it in the background.

        Must be called from a running event loop.

        Args:
            request: The delegation request.
            parent: Handle of the execution whose worker is delegating,
                if any. The new execution runs one level deeper.
            parent_task_id: Task of the parent that is delegating. The new
                execution is cancelled if that task stops waiting for it.

        Returns:
            Handle for ``status``, ``cancel`` and ``wait``.

        Raises:
            CompileError: If the request cannot be compiled. Nothing has
                been executed and no agent record has been touched.
        """
        depth = parent.depth + 1 if parent else 1
        graph = self.builder.compile(request, depth=depth)

        ctx = ExecutionContext(
            graph,
            parent_id=parent.execution_id if parent else None,
            parent_task_id=parent_task_id if parent else None,
        )
        self._executions[ctx.execution_id] = ctx
        if ctx.parent_id:
            self._children.setdefault(ctx.parent_id, []).append(ctx.execution_id)

        ctx.logger.info(
            "Delegation submitted",
            mode=request.mode.value,
            tasks=len(graph.tasks),
            waves=len(graph.waves),
            return_to=request.return_to.value if request.return_to else None,
            parent_id=ctx.parent_id,
            parent_task_id=ctx.parent_task_id,
        )

        ctx.runner = asyncio.create_task(
            self._drive(ctx), name=f"delegation-{ctx.execution_id}"
        )
        self._runners.add(ctx.runner)
        ctx.runner.add_done_callback(self._runners.discard)
        return ctx.handle()

    def status(self, handle: ExecutionHandle | str) -> ExecutionSnapshot:
        """Current per-task states. Never blocks."""
        return self._context(handle).snapshot()

    def graph(self, handle: ExecutionHandle | str) -> TaskGraph:
        """Compiled graph of an execution."""
        return self._context(handle).graph

    def result(self, handle: ExecutionHandle | str) -> AggregatedResult | None:
        """Aggregated result if the execution has finished, else None."""
        ctx = self._context(handle)
        if not ctx.finished.is_set():
            return None
        return self.aggregator.aggregate(ctx.graph, ctx.outcomes, ctx.execution_id)

    async def cancel(
        self, handle: ExecutionHandle | str, stop_running: bool = False
    ) -> ExecutionSnapshot:
        """Cancel an execution.

        Every non-terminal task becomes ``failed(cancelled)`` and no further
        wave is dispatched. Running invocations are left to finish and their
        results are discarded, unless ``stop_running`` is set, in which case
        they are cancelled too. Nested executions started by its tasks are
        cancelled the same way.
        """
        ctx = self._context(handle)
        if not ctx.is_complete():
            await self._cancel(ctx, "Execution cancelled", stop_running)
        return ctx.snapshot()

    async def wait(self, handle: ExecutionHandle | str) -> AggregatedResult:
        """Suspend until every task is terminal, then aggregate.

        Never raises for task failures; inspect ``AggregatedResult.status``.
        """
        ctx = self._context(handle)
        await ctx.finished.wait()
        return self.aggregator.aggregate(ctx.graph, ctx.outcomes, ctx.execution_id)

    async def run(
        self,
        request: DelegationRequest,
        parent: ExecutionHandle | None = None,
    ) -> AggregatedResult:
        """Submit a request and wait for its result."""
        handle = self.submit(request, parent=parent)
        return await self.wait(handle)

    def forget(self, handle: ExecutionHandle | str) -> bool:
        """Discard a finished execution.

        Returns:
            True if it was discarded, False if it is still running.
        """
        ctx = self._context(handle)
        if not ctx.finished.is_set():
            return False
        self._drop(ctx)
        return True

    def executions(self) -> list[ExecutionSnapshot]:
        """Snapshots of all known executions, oldest first."""
        return [ctx.snapshot() for ctx in self._executions.values()]

    async def shutdown(self) -> None:
        """Stop all background executions, evicted ones included."""
        runners = [runner for runner in self._runners if not runner.done()]
        for runner in runners:
            runner.cancel()
        await asyncio.gather(*runners, return_exceptions=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _context(self, handle: ExecutionHandle | str) -> ExecutionContext:
        execution_id = handle if isinstance(handle, str) else handle.execution_id
        ctx = self._executions.get(execution_id)
        if ctx is None:
            raise ExecutionNotFoundError(execution_id)
        return ctx

    def _drop(self, ctx: ExecutionContext) -> None:
        del self._executions[ctx.execution_id]
        self._children.pop(ctx.execution_id, None)
        siblings = self._children.get(ctx.parent_id or "")
        if siblings and ctx.execution_id in siblings:
            siblings.remove(ctx.execution_id)

    def _evict(self) -> None:
        """Drop the oldest finished executions beyond the retention limit."""
        finished = [ctx for ctx in self._executions.values() if ctx.finished.is_set()]
        excess = len(finished) - self.max_retained_executions
        for ctx in finished[: max(excess, 0)]:
            self._drop(ctx)
            ctx.logger.debug("Execution evicted")

    async def _cancel(
        self, ctx: ExecutionContext, message: str, stop_running: bool = False
    ) -> None:
        ctx.cancelled = True
        for task in ctx.graph.tasks:
            outcome = ctx.outcomes[task.id]
            if outcome.state.is_terminal:
                continue
            was_running = outcome.state == TaskState.RUNNING
            outcome.mark_failed(FailureReason.CANCELLED, message)
            if not was_running:
                await self.store.update(task.agent, _set_blocked)
            elif stop_running:
                await self.store.update(task.agent, _set_status(AgentStatus.IDLE))

        ctx.finished.set()
        if stop_running and ctx.runner is not None:
            ctx.runner.cancel()
        ctx.logger.info(
            "Delegation cancelled", reason=message, stop_running=stop_running
        )
        await self._cancel_children(ctx, stop_running=stop_running)

    async def _cancel_children(
        self,
        ctx: ExecutionContext,
        task_id: str | None = None,
        stop_running: bool = True,
    ) -> None:
        """Cancel unfinished nested executions of ``ctx``, or of one of its tasks."""
        for child_id in list(self._children.get(ctx.execution_id, [])):
            child = self._executions.get(child_id)
            if child is None or child.is_complete():
                continue
            if task_id is not None and child.parent_task_id != task_id:
                continue
            await self._cancel(
                child,
                f"Delegating task '{child.parent_task_id}' stopped waiting",
                stop_running,
            )

    async def _drive(self, ctx: ExecutionContext) -> None:
        """Dispatch waves in order until done or cancelled."""
        try:
            for wave in ctx.graph.waves:
                if ctx.cancelled:
                    break

                runnable: list[TaskSpec] = []
                for task_id in wave.task_ids:
                    outcome = ctx.outcomes[task_id]
                    if outcome.state.is_terminal:
                        continue
                    outcome.state = TaskState.READY
                    runnable.append(ctx.graph.task(task_id))

                if not runnable:
                    continue

                ctx.logger.debug(
                    "Dispatching wave",
                    wave=wave.index,
                    task_ids=[task.id for task in runnable],
                    parallel=wave.parallel,
                )

                if wave.parallel:
                    await asyncio.gather(
                        *(self._run_task(ctx, task) for task in runnable)
                    )
                else:
                    for task in runnable:
                        await self._run_task(ctx, task)

        except asyncio.CancelledError:
            self._abandon(ctx, FailureReason.CANCELLED, "Scheduler shut down")
            raise
        except Exception as e:
            ctx.logger.exception("Scheduler loop failed", error=str(e))
            self._abandon(ctx, FailureReason.WORKER_ERROR, f"Scheduler error: {e}")
        finally:
            ctx.finished.set()
            ctx.logger.info(
                "Delegation finished",
                succeeded=sum(
                    1 for o in ctx.outcomes.values() if o.state == TaskState.SUCCEEDED
                ),
                failed=sum(
                    1 for o in ctx.outcomes.values() if o.state == TaskState.FAILED
                ),
                cancelled=ctx.cancelled,
            )
            self._evict()

    async def _run_task(self, ctx: ExecutionContext, task: TaskSpec) -> None:
        """Run one task under its kind's slot and the global limit."""
        outcome = ctx.outcomes[task.id]
        log = ctx.logger.bind(task_id=task.id, agent_kind=task.agent.value)
        lease = TaskLease(self.store, self._semaphore, task)

        try:
            await lease.acquire()
            if outcome.state.is_terminal:
                log.debug("Task skipped", state=outcome.state.value)
                return
            outcome.mark_running()

            record = await self.store.update(
                task.agent, _set_status(AgentStatus.RUNNING, task.id)
            )
            log.info("Task started")

            try:
                worker = await self.registry.get(task.agent)
            except WorkerNotFoundError as e:
                await self._finish_failed(ctx, task, FailureReason.WORKER_ERROR, e)
                return

            invocation = Invocation(
                execution_id=ctx.execution_id,
                task_id=task.id,
                agent=task.agent,
                prompt=task.prompt,
                dependencies={
                    dep: ctx.outcomes[dep].payload for dep in task.depends_on
                },
                depth=ctx.depth,
                requesting_agent=ctx.request.requesting_agent,
                notes=record.notes,
            )
            context = WorkerContext(self, self.store, invocation, lease=lease)
            timeout = task.timeout_seconds or self.default_task_timeout

            try:
                if timeout:
                    payload = await asyncio.wait_for(
                        worker.run(invocation, context), timeout
                    )
                else:
                    payload = await worker.run(invocation, context)
            except TimeoutError:
                await self._cancel_children(ctx, task.id)
                error = TaskTimeoutError(task.id, timeout or 0)
                await self._finish_failed(ctx, task, FailureReason.TIMEOUT, error)
            except Exception as e:
                message = f"{type(e).__name__}: {e}"
                log.warning("Worker raised", error=message)
                await self._cancel_children(ctx, task.id)
                await self._finish_failed(
                    ctx, task, FailureReason.WORKER_ERROR, e, message
                )
            else:
                await self._finish_succeeded(ctx, task, payload)
        finally:
            lease.close()

    async def _finish_succeeded(
        self, ctx: ExecutionContext, task: TaskSpec, payload: Any
    ) -> None:
        outcome = ctx.outcomes[task.id]
        if outcome.state.is_terminal:
            await self._discard(ctx, task)
            return

        outcome.mark_succeeded(payload)
        await self.store.update(task.agent, _set_status(AgentStatus.DONE))
        ctx.logger.info("Task succeeded", task_id=task.id, agent_kind=task.agent.value)

    async def _finish_failed(
        self,
        ctx: ExecutionContext,
        task: TaskSpec,
        reason: FailureReason,
        error: Exception,
        message: str | None = None,
    ) -> None:
        outcome = ctx.outcomes[task.id]
        if outcome.state.is_terminal:
            await self._discard(ctx, task)
            return

        message = message or str(error)
        outcome.mark_failed(reason, message)
        await self.store.update(task.agent, _set_status(AgentStatus.FAILED))
        ctx.logger.warning(
            "Task failed",
            task_id=task.id,
            agent_kind=task.agent.value,
            reason=reason.value,
            error=message,
            error_type=type(error).__name__,
        )
        await self._propagate_failure(ctx, task.id)

    async def _propagate_failure(self, ctx: ExecutionContext, task_id: str) -> None:
        """Fail every transitive dependent without running it."""
        for dependent_id in ctx.graph.dependents(task_id):
            outcome = ctx.outcomes[dependent_id]
            if outcome.state.is_terminal:
                continue
            outcome.mark_failed(
                FailureReason.UPSTREAM_FAILURE,
                f"Upstream task '{task_id}' did not succeed",
            )
            await self.store.update(outcome.agent, _set_blocked)
            ctx.logger.info(
                "Task failed upstream",
                task_id=dependent_id,
                upstream_task_id=task_id,
            )

    async def _discard(self, ctx: ExecutionContext, task: TaskSpec) -> None:
        """Drop the result of an invocation that finished after cancellation."""
        await self.store.update(task.agent, _set_status(AgentStatus.IDLE))
        ctx.logger.info(
            "Task result discarded", task_id=task.id, agent_kind=task.agent.value
        )

    @staticmethod
    def _abandon(ctx: ExecutionContext, reason: FailureReason, error: str) -> None:
        for outcome in ctx.outcomes.values():
            if not outcome.state.is_terminal:
                outcome.mark_failed(reason, error)

