"""Exception handlers that turn hub errors into the ``APIResponse`` envelope.

Every error body has the same shape::

    {"success": false,
     "error": {"code": "<ExceptionClass>", "message": "...", "details": {...}},
     "metadata": {"request_id": "..."}}
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DelegationHubError
from .logging import get_logger

logger = get_logger(__name__)


def create_error_response(
    status_code: int,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Build a JSON error body; empty ``details`` and ``request_id`` are omitted."""
    body: dict[str, Any] = {"code": error, "message": message}
    if details:
        body["details"] = details
    content: dict[str, Any] = {"success": False, "error": body}
    if request_id:
        content["metadata"] = {"request_id": request_id}
    return JSONResponse(status_code=status_code, content=content)


def _request_fields(request: Request) -> dict[str, Any]:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "method": request.method,
        "path": request.url.path,
    }


async def hub_error_handler(request: Request, exc: DelegationHubError) -> JSONResponse:
    """Answer with the status the exception carries.

    Client-side problems (compile errors, unknown executions, conflicts) log
    at warning; anything mapped to 5xx logs at error.
    """
    fields = _request_fields(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        error=type(exc).__name__,
        status_code=exc.status_code,
        message=exc.message,
        details=exc.details,
        **fields,
    )
    return create_error_response(
        status_code=exc.status_code,
        error=type(exc).__name__,
        message=exc.message,
        details=exc.details,
        request_id=fields["request_id"],
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError | PydanticValidationError
) -> JSONResponse:
    """Report body or model validation failures field by field."""
    fields = _request_fields(request)
    problems = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("Request validation failed", errors=problems, **fields)
    return create_error_response(
        status_code=422,
        error="ValidationError",
        message="Request validation failed",
        details={"validation_errors": problems},
        request_id=fields["request_id"],
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    fields = _request_fields(request)
    logger.exception("Unhandled error", error=type(exc).__name__, **fields)
    return create_error_response(
        status_code=500,
        error="InternalServerError",
        message="An unexpected error occurred",
        request_id=fields["request_id"],
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DelegationHubError, hub_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PydanticValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
