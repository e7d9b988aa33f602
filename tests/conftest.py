"""Shared test configuration and fixtures."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio

from delegation_hub.agents import EchoWorker, FunctionWorker, WorkerContext
from delegation_hub.core import (
    HubScheduler,
    InMemoryAgentStateStore,
    TaskGraphBuilder,
    WorkerRegistry,
)
from delegation_hub.models import AgentKind, Invocation
from delegation_hub.utils.config import reset_config


@pytest.fixture(autouse=True)
def _reset_global_config():
    """Keep the global config from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def store() -> InMemoryAgentStateStore:
    """In-memory agent state store fixture."""
    return InMemoryAgentStateStore()


@pytest_asyncio.fixture
async def registry() -> AsyncGenerator[WorkerRegistry, None]:
    """Registry with an echo worker for every agent kind."""
    reg = WorkerRegistry()
    for kind in AgentKind:
        await reg.register(EchoWorker(kind))
    yield reg


@pytest_asyncio.fixture
async def scheduler(
    registry: WorkerRegistry, store: InMemoryAgentStateStore
) -> AsyncGenerator[HubScheduler, None]:
    """HubScheduler fixture."""
    sched = HubScheduler(
        registry=registry,
        store=store,
        builder=TaskGraphBuilder(max_depth=2),
    )
    yield sched
    await sched.shutdown()


Handler = Callable[[Invocation, WorkerContext], Awaitable[Any]]


def make_worker(kind: AgentKind, handler: Handler) -> FunctionWorker:
    """Helper to create a worker from an async function."""
    return FunctionWorker(kind, handler, name=f"test {kind.value} worker")


def delayed(result: Any, delay: float = 0.0) -> Handler:
    """Handler that sleeps, then returns ``result``."""

    async def handler(invocation: Invocation, context: WorkerContext) -> Any:
        await asyncio.sleep(delay)
        return result

    return handler


def failing(message: str = "boom") -> Handler:
    """Handler that always raises."""

    async def handler(invocation: Invocation, context: WorkerContext) -> Any:
        raise RuntimeError(message)

    return handler
