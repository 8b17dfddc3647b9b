from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from notifier.v1.jobs.models import JobRecord, JobStatus
from notifier.v1.jobs.observers import JobOutcome, JobResult, LoggingObserver
from notifier.v1.jobs.service import JobService


async def _age(database, job_id: int, days: int) -> None:
    async with database.SessionLocal() as session:
        await session.execute(
            update(JobRecord)
            .where(JobRecord.id == job_id)
            .values(updated_at=datetime.now(UTC) - timedelta(days=days))
        )
        await session.commit()


@pytest.mark.asyncio
async def test_cleanup_removes_only_old_terminal_jobs(settings, database, broker, enqueue):
    old_completed = await enqueue(target="old@example.com")
    await broker.claim("worker-a")
    await broker.ack(old_completed)
    await _age(database, old_completed, days=45)

    recent_failed = await enqueue(target="recent@example.com", max_attempts=1)
    await broker.claim("worker-a")
    await broker.nack(recent_failed, False)

    old_pending = await enqueue(target="waiting@example.com")
    await _age(database, old_pending, days=45)

    async with database.SessionLocal() as session:
        deleted = await JobService(settings).cleanup_old_jobs(session)
        remaining = {
            job.id for job in (await JobService(settings).list_jobs(session)).jobs
        }

    assert deleted == 1
    assert remaining == {old_pending, recent_failed}


@pytest.mark.asyncio
async def test_replay_returns_none_for_missing_job(settings, database):
    async with database.SessionLocal() as session:
        assert await JobService(settings).replay_job(session, 12345) is None


@pytest.mark.asyncio
async def test_list_jobs_multiple_statuses(settings, database, broker, enqueue):
    claimed = await enqueue()
    waiting = await enqueue()
    await broker.claim("worker-a")
    await enqueue(job_type="WELCOME", payload={"name": "Ada"})

    async with database.SessionLocal() as session:
        result = await JobService(settings).list_jobs(
            session,
            status=[JobStatus.PENDING, JobStatus.IN_FLIGHT],
            job_type="BOOKING_CONFIRMATION",
        )

    assert result.total == 2
    assert {job.id for job in result.jobs} == {claimed, waiting}


def test_logging_observer_accepts_every_result():
    observer = LoggingObserver()
    observer.job_started(1, "WELCOME", "host:0", 1)

    for result in JobResult:
        outcome = JobOutcome(
            job_id=1,
            job_type="WELCOME",
            worker_id="host:0",
            attempt=1,
            result=result,
            error=None if result is JobResult.COMPLETED else "boom",
        )
        if outcome.succeeded:
            observer.job_completed(outcome)
        else:
            observer.job_failed(outcome)


async def _failed(broker, enqueue, **kwargs) -> int:
    job_id = await enqueue(**kwargs)
    await broker.claim("worker-a")
    await broker.nack(job_id, False, error="550 mailbox unavailable")
    return job_id


@pytest.mark.asyncio
async def test_replay_twice_queues_a_single_copy(settings, database, broker, enqueue):
    failed_id = await _failed(broker, enqueue)

    async with database.SessionLocal() as session:
        first = await JobService(settings).replay_job(session, failed_id)
    async with database.SessionLocal() as session:
        second = await JobService(settings).replay_job(session, failed_id)
        pending = await JobService(settings).list_jobs(session, status=[JobStatus.PENDING])
        original = await JobService(settings).get_job_by_id(session, failed_id)

    assert first is not None
    assert second == first
    assert [job.id for job in pending.jobs] == [first]
    assert original.status == JobStatus.FAILED_PERMANENT.value
    assert original.replayed_as_id == first


@pytest.mark.asyncio
async def test_replay_in_same_session_does_not_duplicate(settings, database, broker, enqueue):
    failed_id = await _failed(broker, enqueue)

    async with database.SessionLocal() as session:
        service = JobService(settings)
        first = await service.replay_job(session, failed_id)
        second = await service.replay_job(session, failed_id)

    async with database.SessionLocal() as session:
        pending = await JobService(settings).list_jobs(session, status=[JobStatus.PENDING])

    assert second == first
    assert pending.total == 1


@pytest.mark.asyncio
async def test_replay_keeps_per_job_attempt_limit(settings, database, broker, enqueue):
    failed_id = await _failed(broker, enqueue, max_attempts=1)
    assert settings.job_max_attempts != 1

    async with database.SessionLocal() as session:
        replay_id = await JobService(settings).replay_job(session, failed_id)

    envelope = await broker.claim("worker-b")
    assert envelope.id == replay_id
    assert envelope.max_attempts == 1
    assert envelope.attempt_count == 0
