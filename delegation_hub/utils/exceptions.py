"""Exception hierarchy for the Delegation Hub.

Only compile errors leave ``HubScheduler.submit()``; a failing task is
recorded as an outcome and never raised to the caller. Every class carries
the HTTP status the API layer answers with, so the error handlers do not
need a per-class table.
"""

from typing import Any


class DelegationHubError(Exception):
    """Root of every error raised by this package."""

    status_code = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": type(self).__name__, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.cause is not None:
            body["cause"] = str(self.cause)
        return body


class ConfigurationError(DelegationHubError):
    """Settings could not be loaded or made no sense."""


class InvalidConfigurationError(ConfigurationError):
    def __init__(self, config_key: str, value: Any, message: str | None = None):
        self.config_key = config_key
        self.value = value
        super().__init__(
            message or f"Invalid value for {config_key}: {value!r}",
            details={"config_key": config_key, "value": str(value)},
        )


# Compile errors: raised while turning a request into a task graph, before
# an execution exists and before any agent record changes.


class CompileError(DelegationHubError):
    """A delegation request that can not be scheduled as written.

    ``kind`` names the rule that was broken and is always copied into
    ``details`` so API clients can branch on it.
    """

    status_code = 422
    kind = "compile_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details={"kind": self.kind, **(details or {})})


class MalformedRequestError(CompileError):
    kind = "malformed_request"


class InvalidReferenceError(CompileError):
    """``depends_on`` points at a task id the request does not declare."""

    kind = "invalid_reference"

    def __init__(self, task_id: str, reference: str):
        self.task_id = task_id
        self.reference = reference
        super().__init__(
            f"Task '{task_id}' depends on unknown task '{reference}'",
            details={"task_id": task_id, "reference": reference},
        )


class CyclicDependencyError(CompileError):
    kind = "cyclic_dependency"

    def __init__(self, task_ids: list[str]):
        self.task_ids = task_ids
        super().__init__(
            f"Dependency cycle among tasks: {', '.join(task_ids)}",
            details={"task_ids": task_ids},
        )


class NestingExceededError(CompileError):
    """A worker tried to delegate deeper than ``max_depth`` allows."""

    kind = "nesting_exceeded"

    def __init__(self, depth: int, max_depth: int):
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Delegation depth {depth} exceeds the maximum of {max_depth}",
            details={"depth": depth, "max_depth": max_depth},
        )


# Runtime errors


class ExecutionNotFoundError(DelegationHubError):
    status_code = 404

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(
            f"Execution not found: {execution_id}",
            details={"execution_id": execution_id},
        )


class WorkerNotFoundError(DelegationHubError):
    """No worker serves the agent kind; the task fails as a worker error."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No worker registered for agent kind: {kind}")


class TaskTimeoutError(DelegationHubError):
    def __init__(self, task_id: str, timeout_seconds: float):
        self.task_id = task_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Task {task_id} timed out after {timeout_seconds}s",
            details={"task_id": task_id, "timeout_seconds": timeout_seconds},
        )


class AggregationError(DelegationHubError):
    """An execution was aggregated before all of its tasks were terminal."""

    status_code = 409

    def __init__(self, task_ids: list[str]):
        self.task_ids = task_ids
        super().__init__(
            f"Tasks not in a terminal state: {', '.join(task_ids)}",
            details={"task_ids": task_ids},
        )


# API errors: raised by route handlers only.


class APIError(DelegationHubError):
    """Error whose status code is chosen by the raising route."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, details, cause)
        self.status_code = status_code


class NotFoundError(APIError):
    def __init__(self, resource_type: str, resource_id: str, message: str | None = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            message or f"{resource_type} not found: {resource_id}",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class ConflictError(APIError):
    """The execution is not in a state that allows the operation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status_code=409, details=details)


class ServiceUnavailableError(APIError):
    def __init__(self, service_name: str, message: str | None = None):
        self.service_name = service_name
        super().__init__(
            message or f"Service unavailable: {service_name}",
            status_code=503,
            details={"service": service_name},
        )
