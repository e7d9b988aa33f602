"""FastAPI application for the Delegation Hub.

``create_app`` loads configuration and logging; the lifespan builds the
worker registry, agent state store and scheduler, and tears them down again
on shutdown. Module-level ``app`` is what uvicorn serves.
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from delegation_hub.agents.base import EchoWorker
from delegation_hub.api.routes import api_router, init_dependencies, reset_dependencies
from delegation_hub.core.registry import WorkerRegistry
from delegation_hub.core.scheduler import HubScheduler
from delegation_hub.core.state_store import AgentStateStore, create_state_store
from delegation_hub.models import AgentKind
from delegation_hub.utils.config import (
    AppConfig,
    Environment,
    LogFormat,
    get_config,
    init_config,
)
from delegation_hub.utils.error_handlers import register_error_handlers
from delegation_hub.utils.logging import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "configs" / "app.yaml"
REQUEST_ID_HEADER = "X-Request-ID"

_registry: WorkerRegistry | None = None
_store: AgentStateStore | None = None
_scheduler: HubScheduler | None = None

logger = get_logger(__name__)


async def register_default_workers(registry: WorkerRegistry) -> int:
    """Give every agent kind without a worker an ``EchoWorker``.

    Returns the number of workers added.
    """
    missing = [kind for kind in AgentKind if kind not in registry]
    for kind in missing:
        await registry.register(EchoWorker(kind))
    return len(missing)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global _registry, _store, _scheduler

    config: AppConfig = getattr(app.state, "config", None) or AppConfig()
    logger.info("Delegation Hub starting", version=config.app.version, **config.describe())

    _registry = WorkerRegistry()
    _store = create_state_store(config.state_store)
    _scheduler = HubScheduler.from_config(config.scheduler, _registry, _store)
    added = await register_default_workers(_registry)
    init_dependencies(scheduler=_scheduler, store=_store, registry=_registry)
    logger.info("Delegation Hub ready", default_workers=added)

    try:
        yield
    finally:
        running = sum(1 for snapshot in _scheduler.executions() if not snapshot.finished)
        logger.info("Delegation Hub stopping", running_executions=running)
        await _scheduler.shutdown()
        for kind in _registry.kinds():
            await _registry.unregister(kind)
        reset_dependencies()
        _registry = _store = _scheduler = None


def _install_middleware(app: FastAPI, config: AppConfig) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config.app.env == Environment.DEVELOPMENT else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next: Any) -> Any:
        """Tag the request with an id, echo it back and log one line per call."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        set_correlation_id(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            request_id=request_id,
        )
        return response


def _install_health_checks(app: FastAPI, config: AppConfig) -> None:
    @app.get("/", tags=["Root"])
    async def root() -> dict[str, Any]:
        return {
            "name": config.app.name,
            "version": config.app.version,
            "status": "running",
            "docs": "/docs" if config.app.debug else "disabled",
        }

    @app.get("/ready", tags=["Health"])
    async def readiness() -> JSONResponse:
        """Ready once the lifespan has wired the scheduler and registry."""
        if _registry is None or _scheduler is None:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "message": "Scheduler not initialized"},
            )
        return JSONResponse(content={"status": "ready", "workers": len(_registry)})

    @app.get("/live", tags=["Health"])
    async def liveness() -> JSONResponse:
        return JSONResponse(content={"status": "alive"})


def create_app(
    config_path: str | Path | None = None,
    env_file: str | Path | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        config_path: YAML settings; ``configs/app.yaml`` is used when omitted
            and present.
        env_file: ``.env`` file to load before reading overrides.
    """
    if config_path is None and DEFAULT_CONFIG_PATH.is_file():
        config_path = DEFAULT_CONFIG_PATH
    config = init_config(yaml_path=config_path, env_file=env_file)
    setup_logging(
        level=config.logging.level,
        json_format=config.logging.format == LogFormat.JSON,
    )

    docs_enabled = config.app.debug
    app = FastAPI(
        title=config.app.name,
        description="Schedules work that one agent delegates to specialist agents",
        version=config.app.version,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.config = config

    _install_middleware(app, config)
    register_error_handlers(app)
    app.include_router(api_router)
    _install_health_checks(app, config)
    return app


app = create_app()


def _serve(*, reload: bool) -> None:
    import uvicorn

    config = get_config()
    options: dict[str, Any] = {"reload": True, "reload_dirs": ["delegation_hub"]}
    if not reload:
        # Executions are held in process memory, so never fork workers.
        options = {"workers": 1, "access_log": False}
    uvicorn.run(
        "delegation_hub.main:app",
        host=config.app.host,
        port=config.app.port,
        log_level="info" if reload else "warning",
        **options,
    )


def run_dev_server() -> None:
    _serve(reload=True)


def run_prod_server() -> None:
    _serve(reload=False)


if __name__ == "__main__":
    run_dev_server()
