import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from notifier.config.logging import add_request_context, get_logger

logger = get_logger(__name__)


class NotifierError(Exception):
    """Base exception for the notification subsystem."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(NotifierError):
    """Raised when input validation fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class NotFoundError(NotifierError):
    """Raised when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class BrokerUnavailableError(NotifierError):
    """Raised when the job store cannot be reached."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


class LeaseLostError(NotifierError):
    """Raised when a worker settles a job it no longer owns."""

    def __init__(self, job_id: int, worker_id: str | None = None):
        super().__init__(
            f"Job {job_id} is no longer in flight for this worker",
            status.HTTP_409_CONFLICT,
            {"job_id": job_id, "worker_id": worker_id},
        )


class PipelineError(NotifierError):
    """A render or delivery attempt failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class UnknownJobTypeError(PipelineError):
    """No template is registered for the job type."""


class TemplateError(PipelineError):
    """The payload does not fit the template for its job type."""


class DeliveryError(PipelineError):
    """The transport failed, timed out or rejected the message."""


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


# Seconds a client should wait before retrying while the queue is down
BROKER_RETRY_AFTER_S = 5


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_json(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(
            status_code=status_code,
            message=message,
            details=details,
            request_id=_request_id(request),
        ),
        headers=headers,
    )


async def notifier_exception_handler(request: Request, exc: NotifierError) -> JSONResponse:
    """Render a NotifierError; client errors log as warnings, the rest as errors."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "application_exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )

    headers = None
    if isinstance(exc, BrokerUnavailableError):
        headers = {"Retry-After": str(BROKER_RETRY_AFTER_S)}

    return _error_json(request, exc.status_code, exc.message, exc.details, headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    logger.warning("http_exception", status_code=exc.status_code, detail=exc.detail)
    return _error_json(request, exc.status_code, str(exc.detail), headers=exc.headers)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking internals to the caller."""
    logger.error(
        "unhandled_exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        exc_info=exc,
    )
    return _error_json(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign (or propagate) a request id and bind it to the log context."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
