"""
Per-job lifecycle results and the sinks that receive them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from notifier.config.logging import get_logger
from notifier.v1.jobs.models import JobStatus

logger = get_logger(__name__)


class JobResult(str, Enum):
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED_PERMANENT = "failed_permanent"
    LEASE_LOST = "lease_lost"


@dataclass(frozen=True)
class JobOutcome:
    """Result of one worker step over a single claimed job."""

    job_id: int
    job_type: str
    worker_id: str
    attempt: int
    result: JobResult
    status: JobStatus | None = None
    duration_s: float = 0.0
    error: str | None = None
    retry_delay_s: float | None = None
    delivery: dict[str, Any] | None = field(default=None)

    @property
    def succeeded(self) -> bool:
        return self.result is JobResult.COMPLETED


class JobObserver(Protocol):
    """Receives lifecycle signals; must never influence job flow."""

    def job_started(self, job_id: int, job_type: str, worker_id: str, attempt: int) -> None: ...

    def job_completed(self, outcome: JobOutcome) -> None: ...

    def job_failed(self, outcome: JobOutcome) -> None: ...


class LoggingObserver:
    """Default observer writing structured log events."""

    def job_started(self, job_id: int, job_type: str, worker_id: str, attempt: int) -> None:
        logger.info(
            "job_started",
            job_id=job_id,
            job_type=job_type,
            worker_id=worker_id,
            attempt=attempt,
        )

    def job_completed(self, outcome: JobOutcome) -> None:
        logger.info(
            "job_completed",
            job_id=outcome.job_id,
            job_type=outcome.job_type,
            worker_id=outcome.worker_id,
            attempt=outcome.attempt,
            duration_s=round(outcome.duration_s, 3),
            message_id=(outcome.delivery or {}).get("message_id"),
        )

    def job_failed(self, outcome: JobOutcome) -> None:
        log = logger.error if outcome.result is JobResult.FAILED_PERMANENT else logger.warning
        log(
            "job_failed",
            job_id=outcome.job_id,
            job_type=outcome.job_type,
            worker_id=outcome.worker_id,
            attempt=outcome.attempt,
            result=outcome.result.value,
            error=outcome.error,
            retry_delay_s=outcome.retry_delay_s,
        )
