"""API schema definitions.

Request/Response schemas used by the FastAPI endpoints. Delegation request
bodies are not modelled here: they are accepted in the wire format and
decoded by ``DelegationRequest.from_payload``.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from delegation_hub.models import (
    AgentKind,
    AgentRecord,
    AgentStatus,
    ExecutionSnapshot,
    ResultStatus,
    TaskState,
)

# =============================================================================
# Common Schemas
# =============================================================================


class APIResponse(BaseModel):
    """Standard API response format."""

    success: bool = Field(..., description="Whether the request succeeded")
    data: Any = Field(default=None, description="Response data")
    error: str | None = Field(default=None, description="Error message")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Additional metadata"
    )


class ErrorResponse(BaseModel):
    """Error response format."""

    success: bool = Field(default=False, description="Always False")
    error: str = Field(..., description="Error message")
    error_code: str | None = Field(default=None, description="Error code")
    details: dict[str, Any] = Field(default_factory=dict, description="Error details")


# =============================================================================
# Agent Schemas
# =============================================================================


class AgentResponse(BaseModel):
    """Agent kind information."""

    kind: AgentKind = Field(..., description="Agent kind")
    status: AgentStatus = Field(..., description="Lifecycle status")
    current_task_id: str | None = Field(default=None, description="Running task")
    worker: str | None = Field(default=None, description="Registered worker name")
    busy: bool = Field(default=False, description="Whether the kind's slot is held")
    notes: dict[str, Any] = Field(default_factory=dict, description="Durable notes")
    last_updated: datetime = Field(..., description="Last record update")

    @classmethod
    def from_record(
        cls, record: AgentRecord, worker: str | None = None, busy: bool = False
    ) -> "AgentResponse":
        return cls(
            kind=record.kind,
            status=record.status,
            current_task_id=record.current_task_id,
            worker=worker,
            busy=busy,
            notes=record.notes,
            last_updated=record.last_updated,
        )


# =============================================================================
# Delegation Schemas
# =============================================================================


class DelegationAcceptedResponse(BaseModel):
    """Response to a submitted delegation."""

    execution_id: str = Field(..., description="Execution identifier")
    depth: int = Field(default=1, description="Delegation depth")
    tasks: list[str] = Field(default_factory=list, description="Task ids in order")
    waves: list[list[str]] = Field(
        default_factory=list, description="Task ids per wave, in dispatch order"
    )


class DelegationStatusResponse(BaseModel):
    """Per-task progress of an execution."""

    execution_id: str = Field(..., description="Execution identifier")
    finished: bool = Field(default=False, description="Every task is terminal")
    cancelled: bool = Field(default=False, description="Execution was cancelled")
    progress: dict[str, int] = Field(
        default_factory=dict, description="Number of tasks per state"
    )
    tasks: list[dict[str, Any]] = Field(
        default_factory=list, description="Task outcomes in declaration order"
    )

    @classmethod
    def from_snapshot(cls, snapshot: ExecutionSnapshot) -> "DelegationStatusResponse":
        progress = {state.value: 0 for state in TaskState}
        for outcome in snapshot.tasks:
            progress[outcome.state.value] += 1
        return cls(
            execution_id=snapshot.execution_id,
            finished=snapshot.finished,
            cancelled=snapshot.cancelled,
            progress=progress,
            tasks=[outcome.model_dump(mode="json") for outcome in snapshot.tasks],
        )


class DelegationSummary(BaseModel):
    """Execution list item."""

    execution_id: str
    requesting_agent: AgentKind
    depth: int
    parent_id: str | None = Field(
        default=None, description="Execution whose worker delegated this one"
    )
    finished: bool
    cancelled: bool
    status: ResultStatus | None = Field(
        default=None, description="Overall status once finished"
    )
