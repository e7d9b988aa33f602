"""Settings, structured logging and the error hierarchy shared by the hub."""

from .config import (
    AppConfig,
    AppSettings,
    Environment,
    LogFormat,
    LoggingConfig,
    SchedulerConfig,
    StateStoreBackend,
    StateStoreConfig,
    get_config,
    init_config,
    reset_config,
)
from .error_handlers import create_error_response, register_error_handlers
from .exceptions import (
    APIError,
    AggregationError,
    CompileError,
    ConfigurationError,
    ConflictError,
    CyclicDependencyError,
    DelegationHubError,
    ExecutionNotFoundError,
    InvalidConfigurationError,
    InvalidReferenceError,
    MalformedRequestError,
    NestingExceededError,
    NotFoundError,
    ServiceUnavailableError,
    TaskTimeoutError,
    WorkerNotFoundError,
)
from .logging import (
    LoggerAdapter,
    clear_correlation_id,
    get_agent_logger,
    get_api_logger,
    get_correlation_id,
    get_execution_logger,
    get_logger,
    set_correlation_id,
    setup_logging,
)

__all__ = [
    "APIError",
    "AggregationError",
    "AppConfig",
    "AppSettings",
    "CompileError",
    "ConfigurationError",
    "ConflictError",
    "CyclicDependencyError",
    "DelegationHubError",
    "Environment",
    "ExecutionNotFoundError",
    "InvalidConfigurationError",
    "InvalidReferenceError",
    "LogFormat",
    "LoggerAdapter",
    "LoggingConfig",
    "MalformedRequestError",
    "NestingExceededError",
    "NotFoundError",
    "SchedulerConfig",
    "ServiceUnavailableError",
    "StateStoreBackend",
    "StateStoreConfig",
    "TaskTimeoutError",
    "WorkerNotFoundError",
    "clear_correlation_id",
    "create_error_response",
    "get_agent_logger",
    "get_api_logger",
    "get_config",
    "get_correlation_id",
    "get_execution_logger",
    "get_logger",
    "init_config",
    "register_error_handlers",
    "reset_config",
    "set_correlation_id",
    "setup_logging",
]
