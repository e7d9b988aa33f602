"""API routes.

FastAPI routers for delegations, agent kinds and system health.
"""

from typing import Any

from fastapi import APIRouter, Body, Query, status

from delegation_hub.core.registry import WorkerRegistry
from delegation_hub.core.scheduler import HubScheduler
from delegation_hub.core.state_store import AgentStateStore
from delegation_hub.models import AgentKind, AggregatedResult, DelegationRequest
from delegation_hub.utils.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceUnavailableError,
)
from delegation_hub.utils.logging import get_api_logger

from .schemas import (
    AgentResponse,
    APIResponse,
    DelegationAcceptedResponse,
    DelegationStatusResponse,
    DelegationSummary,
)

logger = get_api_logger()

# Dependencies, set by init_dependencies() at startup
_scheduler: HubScheduler | None = None
_store: AgentStateStore | None = None
_registry: WorkerRegistry | None = None


def init_dependencies(
    scheduler: HubScheduler,
    store: AgentStateStore,
    registry: WorkerRegistry,
) -> None:
    """Initialize the components the routes operate on."""
    global _scheduler, _store, _registry
    _scheduler = scheduler
    _store = store
    _registry = registry


def reset_dependencies() -> None:
    global _scheduler, _store, _registry
    _scheduler = None
    _store = None
    _registry = None


def get_scheduler() -> HubScheduler:
    if _scheduler is None:
        raise ServiceUnavailableError("scheduler")
    return _scheduler


def get_store() -> AgentStateStore:
    if _store is None:
        raise ServiceUnavailableError("state_store")
    return _store


def get_registry() -> WorkerRegistry:
    if _registry is None:
        raise ServiceUnavailableError("registry")
    return _registry


def _result_data(result: AggregatedResult) -> dict[str, Any]:
    data = result.model_dump(mode="json")
    data["recipient"] = result.recipient
    return data


def _parse_kind(kind: str) -> AgentKind:
    try:
        return AgentKind(kind)
    except ValueError as e:
        raise NotFoundError("Agent kind", kind) from e


# =============================================================================
# Delegation Router
# =============================================================================

delegation_router = APIRouter(prefix="/delegations", tags=["Delegations"])


@delegation_router.post("", status_code=status.HTTP_202_ACCEPTED)
async def submit_delegation(
    payload: dict[str, Any] = Body(..., description="Delegation request"),
    wait: bool = Query(default=False, description="Block until the result is ready"),
) -> APIResponse:
    """Submit a delegation request.

    The body uses the delegation wire format (single or compound). With
    ``wait=true`` the response carries the aggregated result.
    """
    scheduler = get_scheduler()
    request = DelegationRequest.from_payload(payload)
    handle = scheduler.submit(request)

    logger.info(
        "Delegation accepted",
        execution_id=handle.execution_id,
        mode=request.mode.value,
        tasks=len(request.tasks),
    )

    if wait:
        result = await scheduler.wait(handle)
        return APIResponse(
            success=True,
            data=_result_data(result),
            metadata={"execution_id": handle.execution_id},
        )

    graph = scheduler.graph(handle)
    accepted = DelegationAcceptedResponse(
        execution_id=handle.execution_id,
        depth=handle.depth,
        tasks=request.task_ids(),
        waves=[wave.task_ids for wave in graph.waves],
    )
    return APIResponse(success=True, data=accepted.model_dump(mode="json"))


@delegation_router.get("")
async def list_delegations() -> APIResponse:
    """List known executions."""
    scheduler = get_scheduler()
    summaries = []
    for snapshot in scheduler.executions():
        result = scheduler.result(snapshot.execution_id)
        summaries.append(
            DelegationSummary(
                execution_id=snapshot.execution_id,
                requesting_agent=snapshot.requesting_agent,
                depth=snapshot.depth,
                parent_id=snapshot.parent_id,
                finished=snapshot.finished,
                cancelled=snapshot.cancelled,
                status=result.status if result else None,
            ).model_dump(mode="json")
        )
    return APIResponse(
        success=True, data=summaries, metadata={"count": len(summaries)}
    )


@delegation_router.get("/{execution_id}")
async def get_delegation_status(execution_id: str) -> APIResponse:
    """Per-task progress of an execution."""
    snapshot = get_scheduler().status(execution_id)
    response = DelegationStatusResponse.from_snapshot(snapshot)
    return APIResponse(success=True, data=response.model_dump(mode="json"))


@delegation_router.post("/{execution_id}/cancel")
async def cancel_delegation(execution_id: str) -> APIResponse:
    """Cancel an execution. Running invocations finish but are discarded."""
    scheduler = get_scheduler()
    if scheduler.status(execution_id).finished:
        raise ConflictError(
            f"Execution already finished: {execution_id}",
            details={"execution_id": execution_id},
        )

    snapshot = await scheduler.cancel(execution_id)
    response = DelegationStatusResponse.from_snapshot(snapshot)
    return APIResponse(success=True, data=response.model_dump(mode="json"))


@delegation_router.get("/{execution_id}/result")
async def get_delegation_result(execution_id: str) -> APIResponse:
    """Aggregated result of a finished execution."""
    result = get_scheduler().result(execution_id)
    if result is None:
        raise ConflictError(
            f"Execution still running: {execution_id}",
            details={"execution_id": execution_id},
        )
    return APIResponse(success=True, data=_result_data(result))


# =============================================================================
# Agent Router
# =============================================================================

agent_router = APIRouter(prefix="/agents", tags=["Agents"])


async def _agent_response(kind: AgentKind) -> AgentResponse:
    store = get_store()
    registry = get_registry()
    record = await store.get(kind)
    worker = None
    if kind in registry:
        worker = getattr(await registry.get(kind), "name", None)
    return AgentResponse.from_record(record, worker=worker, busy=store.is_busy(kind))


@agent_router.get("")
async def list_agents() -> APIResponse:
    """List every agent kind with its record."""
    agents = [(await _agent_response(kind)).model_dump(mode="json") for kind in AgentKind]
    return APIResponse(success=True, data=agents, metadata={"count": len(agents)})


@agent_router.get("/{kind}")
async def get_agent(kind: str) -> APIResponse:
    """Record of one agent kind."""
    response = await _agent_response(_parse_kind(kind))
    return APIResponse(success=True, data=response.model_dump(mode="json"))


@agent_router.get("/{kind}/health")
async def check_agent_health(kind: str) -> APIResponse:
    """Health check of the worker serving a kind."""
    agent_kind = _parse_kind(kind)
    registry = get_registry()
    if agent_kind not in registry:
        raise NotFoundError("Worker", agent_kind.value)

    worker = await registry.get(agent_kind)
    return APIResponse(success=True, data=await worker.health_check())


# =============================================================================
# System Router
# =============================================================================

system_router = APIRouter(tags=["System"])


@system_router.get("/health")
async def health_check() -> APIResponse:
    """System health check."""
    scheduler = get_scheduler()
    registry = get_registry()
    executions = scheduler.executions()

    return APIResponse(
        success=True,
        data={
            "status": "healthy",
            "workers_registered": len(registry),
            "active_executions": sum(1 for s in executions if not s.finished),
            "total_executions": len(executions),
        },
    )


# =============================================================================
# Main API Router
# =============================================================================

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(delegation_router)
api_router.include_router(agent_router)
api_router.include_router(system_router)
