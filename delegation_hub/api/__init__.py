"""API module.

Provides FastAPI routers, schemas, and dependencies.
"""

from .routes import (
    agent_router,
    api_router,
    delegation_router,
    init_dependencies,
    reset_dependencies,
    system_router,
)
from .schemas import (
    AgentResponse,
    APIResponse,
    DelegationAcceptedResponse,
    DelegationStatusResponse,
    DelegationSummary,
    ErrorResponse,
)

__all__ = [
    # Routers
    "api_router",
    "agent_router",
    "delegation_router",
    "system_router",
    # Functions
    "init_dependencies",
    "reset_dependencies",
    # Schemas - Common
    "APIResponse",
    "ErrorResponse",
    # Schemas - Agent
    "AgentResponse",
    # Schemas - Delegation
    "DelegationAcceptedResponse",
    "DelegationStatusResponse",
    "DelegationSummary",
]
