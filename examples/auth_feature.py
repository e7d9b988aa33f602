#!/usr/bin/env python
"""Auth Feature Example - basic usage.

The architect delegates an authentication feature as a sequential chain:
the database worker designs the schema, the backend worker builds the API
on top of it and the frontend worker builds the login page against the
API. The result is returned to the architect.

Usage:
    python examples/auth_feature.py
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from delegation_hub.agents import FunctionWorker, WorkerContext
from delegation_hub.core import HubScheduler, InMemoryAgentStateStore, WorkerRegistry
from delegation_hub.models import AgentKind, DelegationRequest, Invocation
from delegation_hub.utils.logging import setup_logging


async def design_schema(invocation: Invocation, context: WorkerContext) -> Any:
    await context.update_notes(tables=["users", "sessions"])
    return {"tables": ["users", "sessions"], "prompt": invocation.prompt}


async def build_api(invocation: Invocation, context: WorkerContext) -> Any:
    schema = invocation.dependencies["database"]
    return {
        "endpoints": ["POST /login", "POST /logout", "GET /me"],
        "uses_tables": schema["tables"],
    }


async def build_login_page(invocation: Invocation, context: WorkerContext) -> Any:
    api = invocation.dependencies["backend"]
    return {"pages": ["/login"], "calls": api["endpoints"][:2]}


async def setup_scheduler() -> HubScheduler:
    """Create the scheduler and register one worker per kind."""
    registry = WorkerRegistry()
    await registry.register(FunctionWorker(AgentKind.DATABASE, design_schema))
    await registry.register(FunctionWorker(AgentKind.BACKEND, build_api))
    await registry.register(FunctionWorker(AgentKind.FRONTEND, build_login_page))

    return HubScheduler(registry=registry, store=InMemoryAgentStateStore())


async def main() -> None:
    setup_logging(level="WARNING", json_format=False)
    scheduler = await setup_scheduler()

    # Wire format, as an agent would emit it
    request = DelegationRequest.from_payload(
        {
            "type": "sequential",
            "requesting_agent": "architect",
            "return_to": "architect",
            "reason": "Authentication feature",
            "agents": [
                {"agent": "database", "prompt": "Design the user schema"},
                {"agent": "backend", "prompt": "Build the auth API"},
                {"agent": "frontend", "prompt": "Build the login page"},
            ],
        }
    )

    print("=" * 60)
    print("Auth feature delegation")
    print("=" * 60)

    handle = scheduler.submit(request)
    for wave in scheduler.graph(handle).waves:
        print(f"  wave {wave.index}: {', '.join(wave.task_ids)}")

    result = await scheduler.wait(handle)

    print(f"\nStatus: {result.status.value} -> {result.recipient}")
    for entry in result.entries:
        print(f"  [{entry.status.value}] {entry.task_id}: {entry.payload}")

    print("\nAggregated result JSON:")
    print(result.to_json())

    record = await scheduler.store.get(AgentKind.DATABASE)
    print(f"\nDatabase notes: {record.notes}")


if __name__ == "__main__":
    asyncio.run(main())
