"""
Notification worker: claims jobs, drives the delivery pipeline, settles results.
"""

import asyncio
import os
import socket
import time
import uuid

from notifier.config.logging import get_logger, job_context
from notifier.config.settings import Settings
from notifier.v1.core.exceptions import (
    BrokerUnavailableError,
    LeaseLostError,
    NotifierError,
    PipelineError,
)
from notifier.v1.delivery.pipeline import DeliveryPipeline
from notifier.v1.jobs.broker import Broker
from notifier.v1.jobs.models import JobStatus
from notifier.v1.jobs.observers import JobObserver, JobOutcome, JobResult, LoggingObserver
from notifier.v1.jobs.retry import RetryController
from notifier.v1.jobs.schemas import JobEnvelope

logger = get_logger(__name__)

# Upper bound for the poll backoff while the broker is unreachable
_MAX_POLL_BACKOFF_S = 30.0


class JobWorker:
    """
    Broker-backed notification worker.

    Features:
    - A fixed pool of slot loops, each owning at most one job at a time
    - Lease heartbeats for in-flight jobs and a sweep for abandoned leases
    - Exponential backoff with jitter for failed deliveries
    - Poll backoff instead of crashing while the broker is down
    - Lifecycle signals to an injected observer
    """

    def __init__(
        self,
        settings: Settings,
        broker: Broker,
        pipeline: DeliveryPipeline,
        retry: RetryController | None = None,
        observer: JobObserver | None = None,
        worker_id: str | None = None,
    ):
        self.settings = settings
        self.broker = broker
        self.pipeline = pipeline
        self.retry = retry or RetryController.from_settings(settings)
        self.observer = observer or LoggingObserver()
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"
        self.running = False
        self.active_jobs: dict[str, int] = {}
        self._stop_event = asyncio.Event()

    def slot_id(self, slot: int) -> str:
        return f"{self.worker_id}:{slot}"

    async def start(self) -> None:
        """Run the slot loops, heartbeats and lease recovery until stopped."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop_event.clear()
        logger.info(
            "worker_started",
            worker_id=self.worker_id,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            max_attempts=self.settings.job_max_attempts,
        )

        try:
            await asyncio.gather(
                *(self._slot_loop(slot) for slot in range(self.settings.job_concurrency)),
                self._heartbeat_loop(),
                self._recovery_loop(),
            )
        finally:
            self.running = False
            logger.info("worker_stopped", worker_id=self.worker_id)

    async def stop(self, timeout_s: float = 30.0) -> None:
        """Stop the worker gracefully."""
        logger.info("worker_stopping", worker_id=self.worker_id)
        self.running = False
        self._stop_event.set()

        # Wait for active jobs to complete (with timeout)
        deadline = time.monotonic() + timeout_s
        while self.active_jobs and time.monotonic() < deadline:
            await asyncio.sleep(0.1)

        if self.active_jobs:
            logger.warning(
                "worker_stopped_with_active_jobs",
                worker_id=self.worker_id,
                active_jobs=list(self.active_jobs.values()),
            )

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _slot_loop(self, slot: int) -> None:
        slot_id = self.slot_id(slot)
        consecutive_failures = 0

        while self.running:
            try:
                outcome = await self.run_once(slot_id)
                consecutive_failures = 0
            except BrokerUnavailableError as e:
                consecutive_failures += 1
                delay = min(
                    _MAX_POLL_BACKOFF_S,
                    self.settings.job_poll_interval_s * (2**consecutive_failures),
                )
                logger.warning(
                    "broker_poll_failed",
                    worker_id=slot_id,
                    error=e.message,
                    consecutive_failures=consecutive_failures,
                    retry_in_s=delay,
                )
                await self._sleep(delay)
                continue
            except Exception:
                logger.exception("worker_loop_error", worker_id=slot_id)
                await self._sleep(5)
                continue

            if outcome is None:
                await self._sleep(self.settings.job_poll_interval_s)

    async def run_once(self, slot_id: str | None = None) -> JobOutcome | None:
        """Claim and process a single job. Returns None when the queue is empty."""
        slot_id = slot_id or self.slot_id(0)
        envelope = await self.broker.claim(slot_id)
        if envelope is None:
            return None
        return await self.process(envelope, slot_id)

    async def process(self, envelope: JobEnvelope, slot_id: str) -> JobOutcome:
        """Run the pipeline for a claimed job and settle it with the broker."""
        self.active_jobs[slot_id] = envelope.id
        started = time.monotonic()
        self._signal("job_started", envelope.id, envelope.type, slot_id, envelope.attempt)

        try:
            try:
                with job_context(envelope.id, envelope.type, slot_id, envelope.attempt):
                    delivery = await self.pipeline.run(envelope)
            except Exception as e:
                return await self._handle_failure(envelope, slot_id, e, started)

            try:
                await self.broker.ack(envelope.id, worker_id=slot_id, result=delivery.to_dict())
            except LeaseLostError:
                return self._lease_lost(envelope, slot_id, started)

            outcome = JobOutcome(
                job_id=envelope.id,
                job_type=envelope.type,
                worker_id=slot_id,
                attempt=envelope.attempt,
                result=JobResult.COMPLETED,
                status=JobStatus.COMPLETED,
                duration_s=time.monotonic() - started,
                delivery=delivery.to_dict(),
            )
            self._signal("job_completed", outcome)
            return outcome

        finally:
            self.active_jobs.pop(slot_id, None)

    async def _handle_failure(
        self, envelope: JobEnvelope, slot_id: str, error: Exception, started: float
    ) -> JobOutcome:
        message = error.message if isinstance(error, NotifierError) else f"{type(error).__name__}: {error}"
        if not isinstance(error, PipelineError):
            # Not a render/transport failure: keep the traceback for debugging
            logger.error(
                "pipeline_crashed",
                job_id=envelope.id,
                worker_id=slot_id,
                error=message,
                exc_info=error,
            )

        decision = self.retry.decide(envelope)
        try:
            status = await self.broker.nack(
                envelope.id,
                decision.retry,
                delay_s=decision.delay_s,
                error=message,
                worker_id=slot_id,
            )
        except LeaseLostError:
            return self._lease_lost(envelope, slot_id, started)

        requeued = status is JobStatus.PENDING
        outcome = JobOutcome(
            job_id=envelope.id,
            job_type=envelope.type,
            worker_id=slot_id,
            attempt=decision.attempt,
            result=JobResult.RETRY_SCHEDULED if requeued else JobResult.FAILED_PERMANENT,
            status=status,
            duration_s=time.monotonic() - started,
            error=message,
            retry_delay_s=decision.delay_s if requeued else None,
        )
        self._signal("job_failed", outcome)
        return outcome

    def _lease_lost(self, envelope: JobEnvelope, slot_id: str, started: float) -> JobOutcome:
        # Another worker may already own this job; it will be delivered again
        outcome = JobOutcome(
            job_id=envelope.id,
            job_type=envelope.type,
            worker_id=slot_id,
            attempt=envelope.attempt,
            result=JobResult.LEASE_LOST,
            duration_s=time.monotonic() - started,
            error="Lease expired before the job was settled",
        )
        self._signal("job_failed", outcome)
        return outcome

    def _signal(self, name: str, *args) -> None:
        try:
            getattr(self.observer, name)(*args)
        except Exception:
            logger.exception("observer_error", signal=name)

    async def _heartbeat_loop(self) -> None:
        """Extend leases for jobs this process is working on."""
        while self.running:
            for slot_id, job_id in list(self.active_jobs.items()):
                try:
                    await self.broker.heartbeat([job_id], slot_id)
                except BrokerUnavailableError as e:
                    logger.warning("heartbeat_failed", worker_id=slot_id, job_id=job_id, error=e.message)

            await self._sleep(self.settings.job_heartbeat_interval_s)

    async def _recovery_loop(self) -> None:
        """Return jobs abandoned by crashed workers to the queue."""
        while self.running:
            try:
                await self.broker.release_expired()
            except BrokerUnavailableError as e:
                logger.warning("lease_recovery_failed", worker_id=self.worker_id, error=e.message)

            await self._sleep(self.settings.job_recovery_interval_s)
