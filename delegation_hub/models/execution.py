"""Execution data models.

Per-task states and outcomes tracked by the scheduler, the payload sent to
workers, the non-blocking status snapshot and the aggregated result
returned to the requester.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .agent import AgentKind


class TaskState(str, Enum):
    """Lifecycle state of one task."""

    PENDING = "pending"  # waiting on dependencies
    READY = "ready"  # dependencies satisfied, waiting for dispatch
    RUNNING = "running"  # invocation in flight
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)


class FailureReason(str, Enum):
    """Why a task ended in ``failed``."""

    WORKER_ERROR = "worker_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UPSTREAM_FAILURE = "upstream_failure"


class ResultStatus(str, Enum):
    """Overall status of an aggregated result."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


class TaskOutcome(BaseModel):
    """Outcome of one task inside an execution."""

    task_id: str = Field(..., description="Task id")
    agent: AgentKind = Field(..., description="Agent kind the task was routed to")
    state: TaskState = Field(default=TaskState.PENDING, description="Current state")
    payload: Any = Field(default=None, description="Worker output on success")
    error: str | None = Field(default=None, description="Error message on failure")
    reason: FailureReason | None = Field(default=None, description="Failure reason")
    started_at: datetime | None = Field(default=None, description="Start time")
    finished_at: datetime | None = Field(default=None, description="Finish time")

    def mark_running(self) -> None:
        self.state = TaskState.RUNNING
        self.started_at = datetime.now(UTC)

    def mark_succeeded(self, payload: Any) -> None:
        self.state = TaskState.SUCCEEDED
        self.payload = payload
        self.finished_at = datetime.now(UTC)

    def mark_failed(self, reason: FailureReason, error: str) -> None:
        self.state = TaskState.FAILED
        self.reason = reason
        self.error = error
        self.finished_at = datetime.now(UTC)


class Invocation(BaseModel):
    """Payload handed to a worker for one task.

    ``dependencies`` maps each direct dependency's task id to its output so
    a later stage can build on an earlier one without re-deriving it.
    """

    execution_id: str = Field(..., description="Owning execution")
    task_id: str = Field(..., description="Task id")
    agent: AgentKind = Field(..., description="Agent kind being invoked")
    prompt: Any = Field(default=None, description="Opaque instruction payload")
    dependencies: dict[str, Any] = Field(
        default_factory=dict, description="Outputs of completed dependencies"
    )
    depth: int = Field(default=1, description="Delegation depth of the execution")
    requesting_agent: AgentKind = Field(..., description="Agent that delegated")
    notes: dict[str, Any] = Field(
        default_factory=dict, description="Notes left by earlier invocations"
    )


class ExecutionHandle(BaseModel):
    """Reference to a submitted delegation request."""

    execution_id: str = Field(..., description="Execution identifier")
    depth: int = Field(default=1, description="Delegation depth")

    model_config = {"frozen": True}


class ExecutionSnapshot(BaseModel):
    """Point-in-time view of an execution."""

    execution_id: str
    requesting_agent: AgentKind
    return_to: AgentKind | None = None
    depth: int = 1
    parent_id: str | None = None
    cancelled: bool = False
    finished: bool = False
    tasks: list[TaskOutcome] = Field(default_factory=list)

    def state_of(self, task_id: str) -> TaskState | None:
        for outcome in self.tasks:
            if outcome.task_id == task_id:
                return outcome.state
        return None


class ResultEntry(BaseModel):
    """One task's line in the aggregated result."""

    task_id: str
    agent: AgentKind
    status: TaskState
    payload: Any = None
    error: str | None = None
    reason: FailureReason | None = None


class AggregatedResult(BaseModel):
    """Merged outputs of an execution, in task declaration order."""

    execution_id: str
    requesting_agent: AgentKind
    return_to: AgentKind | None = None
    status: ResultStatus
    entries: list[ResultEntry] = Field(default_factory=list)

    @property
    def recipient(self) -> str:
        """Who receives the result: ``return_to`` or the external caller."""
        return self.return_to.value if self.return_to else "caller"

    def entry(self, task_id: str) -> ResultEntry | None:
        for entry in self.entries:
            if entry.task_id == task_id:
                return entry
        return None

    def to_json(self) -> str:
        """Serialize with stable key ordering."""
        data = self.model_dump(mode="json")
        data["recipient"] = self.recipient
        return json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)
