"""
SQL-backed job broker with leases and delayed visibility.
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import case, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.config.logging import get_logger
from notifier.config.settings import Settings
from notifier.infra.database import Database
from notifier.v1.core.exceptions import BrokerUnavailableError, LeaseLostError
from notifier.v1.jobs.models import JobRecord, JobStatus
from notifier.v1.jobs.schemas import JobCreate, JobEnvelope

logger = get_logger(__name__)

# Losing a compare-and-set race moves on to the next candidate; give up after this
_CLAIM_RACE_RETRIES = 5

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, OSError)


class Broker(Protocol):
    """Everything producers and workers need from a physical queue."""

    async def enqueue(self, job: JobCreate) -> int: ...

    async def claim(self, worker_id: str) -> JobEnvelope | None: ...

    async def ack(
        self,
        job_id: int,
        worker_id: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> None: ...

    async def nack(
        self,
        job_id: int,
        retry: bool,
        *,
        delay_s: float = 0.0,
        error: str | None = None,
        worker_id: str | None = None,
    ) -> JobStatus: ...

    async def heartbeat(self, job_ids: Iterable[int], worker_id: str) -> int: ...

    async def release_expired(self) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SqlBroker:
    """
    Broker over the ``jobs`` table.

    Claiming selects the oldest visible pending row (``FOR UPDATE SKIP LOCKED``
    on PostgreSQL) and then flips it with a guarded ``UPDATE ... WHERE
    status = 'pending'``. Only the caller whose update touches the row owns the
    job, which keeps claims exclusive on engines without row locks too.
    """

    def __init__(self, database: Database, settings: Settings):
        self.database = database
        self.default_max_attempts = settings.job_max_attempts
        self.lease_s = settings.job_visibility_timeout_s

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.database.SessionLocal() as session:
                yield session
        except _UNAVAILABLE_ERRORS as e:
            logger.warning("broker_unavailable", operation=operation, error=str(e))
            raise BrokerUnavailableError(
                f"Broker unavailable during {operation}",
                {"operation": operation, "error": str(e)},
            ) from e

    async def enqueue(self, job: JobCreate) -> int:
        """Insert a pending job and return its id."""
        now = _utcnow()
        record = JobRecord(
            type=job.type,
            payload=job.payload,
            target=job.target,
            status=JobStatus.PENDING.value,
            attempt_count=0,
            max_attempts=job.max_attempts or self.default_max_attempts,
            available_at=now,
            created_at=now,
            updated_at=now,
        )

        async with self._session("enqueue") as session:
            session.add(record)
            await session.commit()

        logger.info(
            "job_enqueued",
            job_id=record.id,
            job_type=record.type,
            max_attempts=record.max_attempts,
        )
        return record.id

    async def claim(self, worker_id: str) -> JobEnvelope | None:
        """Take the oldest visible pending job, or return None when idle."""
        async with self._session("claim") as session:
            for _ in range(_CLAIM_RACE_RETRIES):
                now = _utcnow()

                candidate_query = (
                    select(JobRecord.id)
                    .where(
                        JobRecord.status == JobStatus.PENDING.value,
                        JobRecord.available_at <= now,
                    )
                    .order_by(JobRecord.available_at, JobRecord.id)
                    .limit(1)
                )
                if self.database.supports_skip_locked:
                    candidate_query = candidate_query.with_for_update(skip_locked=True)

                job_id = (await session.execute(candidate_query)).scalar_one_or_none()
                if job_id is None:
                    await session.rollback()
                    return None

                result = await session.execute(
                    update(JobRecord)
                    .where(
                        JobRecord.id == job_id,
                        JobRecord.status == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.IN_FLIGHT.value,
                        claimed_by=worker_id,
                        claimed_at=now,
                        lease_expires_at=now + timedelta(seconds=self.lease_s),
                        last_attempt_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 1:
                    await session.commit()
                    record = await session.get(JobRecord, job_id)
                    envelope = JobEnvelope.model_validate(record)
                    logger.debug(
                        "job_claimed",
                        job_id=envelope.id,
                        job_type=envelope.type,
                        worker_id=worker_id,
                        attempt=envelope.attempt,
                    )
                    return envelope

                # Another worker won the row between select and update
                await session.rollback()

        return None

    async def ack(
        self,
        job_id: int,
        worker_id: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Mark an in-flight job completed."""
        now = _utcnow()
        stmt = update(JobRecord).where(
            JobRecord.id == job_id,
            JobRecord.status == JobStatus.IN_FLIGHT.value,
        )
        if worker_id is not None:
            stmt = stmt.where(JobRecord.claimed_by == worker_id)

        async with self._session("ack") as session:
            outcome = await session.execute(
                stmt.values(
                    status=JobStatus.COMPLETED.value,
                    result=result,
                    lease_expires_at=None,
                    completed_at=now,
                    updated_at=now,
                ).execution_options(synchronize_session=False)
            )
            if outcome.rowcount == 0:
                await session.rollback()
                raise LeaseLostError(job_id, worker_id)
            await session.commit()

        logger.debug("job_acked", job_id=job_id, worker_id=worker_id)

    async def nack(
        self,
        job_id: int,
        retry: bool,
        *,
        delay_s: float = 0.0,
        error: str | None = None,
        worker_id: str | None = None,
    ) -> JobStatus:
        """
        Record a failed attempt.

        The attempt counter always moves forward. The job goes back to pending
        (visible again after ``delay_s``) only when ``retry`` is set and the
        counter is still below ``max_attempts``; otherwise it fails permanently.
        """
        now = _utcnow()
        next_attempt = JobRecord.attempt_count + 1

        if retry:
            next_status = case(
                (next_attempt < JobRecord.max_attempts, JobStatus.PENDING.value),
                else_=JobStatus.FAILED_PERMANENT.value,
            )
        else:
            next_status = JobStatus.FAILED_PERMANENT.value

        stmt = update(JobRecord).where(
            JobRecord.id == job_id,
            JobRecord.status == JobStatus.IN_FLIGHT.value,
        )
        if worker_id is not None:
            stmt = stmt.where(JobRecord.claimed_by == worker_id)

        async with self._session("nack") as session:
            outcome = await session.execute(
                stmt.values(
                    attempt_count=next_attempt,
                    status=next_status,
                    available_at=now + timedelta(seconds=max(0.0, delay_s)),
                    lease_expires_at=None,
                    last_error=error,
                    updated_at=now,
                ).execution_options(synchronize_session=False)
            )
            if outcome.rowcount == 0:
                await session.rollback()
                raise LeaseLostError(job_id, worker_id)

            status = (
                await session.execute(
                    select(JobRecord.status).where(JobRecord.id == job_id)
                )
            ).scalar_one()
            await session.commit()

        return JobStatus(status)

    async def heartbeat(self, job_ids: Iterable[int], worker_id: str) -> int:
        """Extend the lease on jobs still owned by ``worker_id``."""
        ids = list(job_ids)
        if not ids:
            return 0

        now = _utcnow()
        async with self._session("heartbeat") as session:
            outcome = await session.execute(
                update(JobRecord)
                .where(
                    JobRecord.id.in_(ids),
                    JobRecord.status == JobStatus.IN_FLIGHT.value,
                    JobRecord.claimed_by == worker_id,
                )
                .values(
                    lease_expires_at=now + timedelta(seconds=self.lease_s),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        return outcome.rowcount

    async def release_expired(self) -> int:
        """
        Recover jobs whose worker stopped heartbeating.

        The abandoned attempt counts against ``max_attempts``, so a job that
        keeps killing its workers still ends up failed permanently.
        """
        now = _utcnow()
        next_attempt = JobRecord.attempt_count + 1

        async with self._session("release_expired") as session:
            outcome = await session.execute(
                update(JobRecord)
                .where(
                    JobRecord.status == JobStatus.IN_FLIGHT.value,
                    JobRecord.lease_expires_at < now,
                )
                .values(
                    attempt_count=next_attempt,
                    status=case(
                        (next_attempt < JobRecord.max_attempts, JobStatus.PENDING.value),
                        else_=JobStatus.FAILED_PERMANENT.value,
                    ),
                    available_at=now,
                    claimed_by=None,
                    lease_expires_at=None,
                    last_error=f"Lease expired after {self.lease_s:g}s without acknowledgement",
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        released = outcome.rowcount
        if released:
            logger.warning(
                "expired_leases_released",
                released_count=released,
                visibility_timeout_s=self.lease_s,
            )
        return released
