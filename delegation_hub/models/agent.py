"""Agent data models.

This module defines agent kinds (the capability roles tasks are routed to)
and the durable per-kind record the hub keeps for each of them.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AgentKind(str, Enum):
    """Capability role a task is routed to.

    The hub never interprets a kind; it only routes to the worker
    registered for it.
    """

    ARCHITECT = "architect"
    DATABASE = "database"
    BACKEND = "backend"
    FRONTEND = "frontend"
    MOBILE = "mobile"
    DESIGN = "design"
    DEPLOYMENT = "deployment"
    GENERIC = "generic"


class AgentStatus(str, Enum):
    """Lifecycle status of an agent kind, written only by the hub."""

    IDLE = "idle"  # no task has touched the kind yet, or a result was discarded
    RUNNING = "running"  # a task of this kind is executing
    BLOCKED = "blocked"  # a task of this kind could not run because of upstream
    FAILED = "failed"  # the last task of this kind failed
    DONE = "done"  # the last task of this kind succeeded


class AgentRecord(BaseModel):
    """Durable memory for one agent kind.

    Created on first reference to a kind and never deleted. The hub owns
    ``status`` and ``current_task_id``; workers own ``notes``.
    """

    kind: AgentKind = Field(..., description="Agent kind this record belongs to")
    status: AgentStatus = Field(default=AgentStatus.IDLE, description="Current status")
    current_task_id: str | None = Field(
        default=None, description="Task currently running for this kind"
    )
    notes: dict[str, Any] = Field(
        default_factory=dict, description="Free-form notes written by workers"
    )
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="Last update time"
    )

    model_config = {"extra": "forbid"}

    def touch(self) -> None:
        """Refresh ``last_updated``."""
        self.last_updated = datetime.now(UTC)
