"""Data models package.

This module defines all data models used in the Delegation Hub.
"""

from .agent import (
    AgentKind,
    AgentRecord,
    AgentStatus,
)
from .execution import (
    AggregatedResult,
    ExecutionHandle,
    ExecutionSnapshot,
    FailureReason,
    Invocation,
    ResultEntry,
    ResultStatus,
    TaskOutcome,
    TaskState,
)
from .request import (
    DelegationMode,
    DelegationRequest,
    TaskSpec,
)

__all__ = [
    # Agent models
    "AgentKind",
    "AgentRecord",
    "AgentStatus",
    # Request models
    "DelegationMode",
    "DelegationRequest",
    "TaskSpec",
    # Execution models
    "AggregatedResult",
    "ExecutionHandle",
    "ExecutionSnapshot",
    "FailureReason",
    "Invocation",
    "ResultEntry",
    "ResultStatus",
    "TaskOutcome",
    "TaskState",
]
