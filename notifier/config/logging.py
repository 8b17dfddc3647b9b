import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from .settings import Settings, get_settings


def _renderers(settings: Settings) -> list[Any]:
    use_json = settings.log_format == "json" or (
        settings.log_format == "auto" and not settings.debug
    )
    if use_json:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    # ConsoleRenderer formats tracebacks itself
    return [structlog.dev.ConsoleRenderer()]


def _service_fields(settings: Settings) -> Any:
    def add_service(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return add_service


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog for the API and worker processes."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    # Libraries (sqlalchemy, httpx, aiosmtplib) log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _service_fields(settings),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *_renderers(settings),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Add request-specific context to all log messages."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


@contextmanager
def job_context(job_id: int, job_type: str, worker_id: str, attempt: int) -> Iterator[None]:
    """Tag every event logged while a job is processed, transports included."""
    with structlog.contextvars.bound_contextvars(
        job_id=job_id, job_type=job_type, worker_id=worker_id, attempt=attempt
    ):
        yield
