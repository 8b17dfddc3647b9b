"""
Producer-side enqueue contract used by request handlers.

Call only after the business change is committed: a notification about a
booking that was rolled back must never be queued.
"""

import asyncio
from typing import Any

from notifier.config.logging import get_logger
from notifier.config.settings import Settings
from notifier.v1.core.exceptions import BrokerUnavailableError
from notifier.v1.delivery.payloads import JobPayload, JobType
from notifier.v1.delivery.templates import parse_payload, resolve_job_type
from notifier.v1.jobs.broker import Broker
from notifier.v1.jobs.schemas import JobCreate

logger = get_logger(__name__)


class JobProducer:
    """Turns committed business events into queued notification jobs."""

    def __init__(self, broker: Broker, settings: Settings, retry_delay_s: float = 0.2):
        self.broker = broker
        self.max_attempts = settings.job_max_attempts
        self.enqueue_attempts = settings.enqueue_retry_attempts
        self.retry_delay_s = retry_delay_s

    def build_job(
        self,
        job_type: JobType | str,
        payload: JobPayload | dict[str, Any],
        target: str,
    ) -> JobCreate:
        """Validate the payload for its type and build the insert schema."""
        resolved = job_type if isinstance(job_type, JobType) else resolve_job_type(job_type)
        if not isinstance(payload, JobPayload):
            payload = parse_payload(resolved, payload)

        return JobCreate(
            type=resolved.value,
            payload=payload.model_dump(mode="json", exclude_none=True),
            target=target,
            max_attempts=self.max_attempts,
        )

    async def enqueue(
        self,
        job_type: JobType | str,
        payload: JobPayload | dict[str, Any],
        target: str,
    ) -> int:
        """
        Queue a notification and return the job id without waiting for delivery.

        Raises:
            UnknownJobTypeError / TemplateError: the job could never be rendered
            BrokerUnavailableError: the queue could not be reached
        """
        return await self.broker.enqueue(self.build_job(job_type, payload, target))

    async def notify(
        self,
        job_type: JobType | str,
        payload: JobPayload | dict[str, Any],
        target: str,
    ) -> int | None:
        """
        Fire-and-forget enqueue for request handlers.

        Retries a few times while the broker is unreachable. If it stays down the
        failure is logged at error level and None is returned, so the caller's
        already-committed business action still succeeds.
        """
        job = self.build_job(job_type, payload, target)

        for attempt in range(1, self.enqueue_attempts + 1):
            try:
                return await self.broker.enqueue(job)
            except BrokerUnavailableError as e:
                if attempt == self.enqueue_attempts:
                    logger.error(
                        "notification_enqueue_failed",
                        job_type=job.type,
                        target=target,
                        attempts=attempt,
                        error=e.message,
                    )
                    return None

                logger.warning(
                    "notification_enqueue_retry",
                    job_type=job.type,
                    attempt=attempt,
                    error=e.message,
                )
                await asyncio.sleep(self.retry_delay_s * attempt)

        return None
