"""Core components package.

This package contains the task graph builder, the agent state store, the
worker registry, the hub scheduler and the result aggregator.
"""

from .aggregator import AggregationError, ResultAggregator
from .graph import TaskGraph, TaskGraphBuilder, Wave
from .registry import WorkerAlreadyRegisteredError, WorkerProtocol, WorkerRegistry
from .scheduler import ExecutionContext, HubScheduler, TaskLease
from .state_store import (
    AgentStateStore,
    FileAgentStateStore,
    InMemoryAgentStateStore,
    create_state_store,
)

__all__ = [
    # Graph
    "TaskGraph",
    "TaskGraphBuilder",
    "Wave",
    # State store
    "AgentStateStore",
    "InMemoryAgentStateStore",
    "FileAgentStateStore",
    "create_state_store",
    # Registry
    "WorkerProtocol",
    "WorkerRegistry",
    "WorkerAlreadyRegisteredError",
    # Scheduler
    "HubScheduler",
    "ExecutionContext",
    "TaskLease",
    # Aggregator
    "ResultAggregator",
    "AggregationError",
]
