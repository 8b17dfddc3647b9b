"""Tests for the SQL broker: ordering, exclusivity, settlement and leases."""

import asyncio

import pytest

from notifier.v1.core.exceptions import BrokerUnavailableError, LeaseLostError
from notifier.v1.jobs.broker import SqlBroker
from notifier.v1.jobs.models import JobRecord, JobStatus
from notifier.v1.jobs.schemas import JobCreate


async def _load(database, job_id: int) -> JobRecord:
    async with database.SessionLocal() as session:
        return await session.get(JobRecord, job_id)


@pytest.mark.asyncio
async def test_enqueue_creates_pending_job(broker, database, enqueue):
    job_id = await enqueue()

    record = await _load(database, job_id)
    assert record.status == JobStatus.PENDING.value
    assert record.attempt_count == 0
    assert record.max_attempts == 3
    assert record.payload["title"] == "Standup"
    assert record.claimed_by is None


@pytest.mark.asyncio
async def test_enqueue_respects_max_attempts_override(database, enqueue):
    job_id = await enqueue(max_attempts=5)

    record = await _load(database, job_id)
    assert record.max_attempts == 5


@pytest.mark.asyncio
async def test_claim_returns_none_when_empty(broker):
    assert await broker.claim("worker-a") is None


@pytest.mark.asyncio
async def test_claim_is_fifo(broker, enqueue):
    first = await enqueue(target="first@example.com")
    second = await enqueue(target="second@example.com")
    third = await enqueue(target="third@example.com")

    claimed = [(await broker.claim("worker-a")).id for _ in range(3)]

    assert claimed == [first, second, third]
    assert await broker.claim("worker-a") is None


@pytest.mark.asyncio
async def test_claim_returns_envelope_and_marks_in_flight(broker, database, enqueue):
    job_id = await enqueue()

    envelope = await broker.claim("worker-a")

    assert envelope.id == job_id
    assert envelope.type == "BOOKING_CONFIRMATION"
    assert envelope.target == "ada@example.com"
    assert envelope.status == JobStatus.IN_FLIGHT
    assert envelope.attempt_count == 0
    assert envelope.attempt == 1
    assert envelope.claimed_by == "worker-a"
    assert envelope.lease_expires_at is not None
    assert envelope.lease_expires_at.tzinfo is not None

    record = await _load(database, job_id)
    assert record.status == JobStatus.IN_FLIGHT.value
    assert record.last_attempt_at is not None


@pytest.mark.asyncio
async def test_concurrent_claimers_never_share_a_job(broker, enqueue):
    job_ids = [await enqueue(target=f"user{i}@example.com") for i in range(12)]

    async def drain(worker_id: str) -> list[int]:
        claimed = []
        while (envelope := await broker.claim(worker_id)) is not None:
            claimed.append(envelope.id)
        return claimed

    results = await asyncio.gather(*(drain(f"worker-{n}") for n in range(4)))
    all_claimed = [job_id for batch in results for job_id in batch]

    assert len(all_claimed) == len(set(all_claimed))
    assert sorted(all_claimed) == sorted(job_ids)


@pytest.mark.asyncio
async def test_ack_completes_job_and_stores_result(broker, database, enqueue):
    job_id = await enqueue()
    await broker.claim("worker-a")

    await broker.ack(job_id, worker_id="worker-a", result={"message_id": "abc"})

    record = await _load(database, job_id)
    assert record.status == JobStatus.COMPLETED.value
    assert record.result == {"message_id": "abc"}
    assert record.completed_at is not None
    assert record.lease_expires_at is None


@pytest.mark.asyncio
async def test_ack_twice_raises_lease_lost(broker, enqueue):
    job_id = await enqueue()
    await broker.claim("worker-a")
    await broker.ack(job_id)

    with pytest.raises(LeaseLostError):
        await broker.ack(job_id)


@pytest.mark.asyncio
async def test_ack_by_other_worker_raises_lease_lost(broker, database, enqueue):
    job_id = await enqueue()
    await broker.claim("worker-a")

    with pytest.raises(LeaseLostError) as exc_info:
        await broker.ack(job_id, worker_id="worker-b")

    assert exc_info.value.details == {"job_id": job_id, "worker_id": "worker-b"}
    assert (await _load(database, job_id)).status == JobStatus.IN_FLIGHT.value


@pytest.mark.asyncio
async def test_nack_with_retry_requeues_and_counts_attempt(broker, database, enqueue):
    job_id = await enqueue()
    await broker.claim("worker-a")

    status = await broker.nack(job_id, True, error="SMTP timeout", worker_id="worker-a")

    assert status is JobStatus.PENDING
    record = await _load(database, job_id)
    assert record.status == JobStatus.PENDING.value
    assert record.attempt_count == 1
    assert record.last_error == "SMTP timeout"

    envelope = await broker.claim("worker-b")
    assert envelope.id == job_id
    assert envelope.attempt_count == 1
    assert envelope.attempt == 2


@pytest.mark.asyncio
async def test_nack_without_retry_fails_permanently(broker, database, enqueue):
    job_id = await enqueue()
    await broker.claim("worker-a")

    status = await broker.nack(job_id, False, error="bad payload")

    assert status is JobStatus.FAILED_PERMANENT
    record = await _load(database, job_id)
    assert record.status == JobStatus.FAILED_PERMANENT.value
    assert record.attempt_count == 1
    assert await broker.claim("worker-a") is None


@pytest.mark.asyncio
async def test_nack_exhausts_attempts(broker, database, enqueue):
    job_id = await enqueue(max_attempts=2)

    await broker.claim("worker-a")
    assert await broker.nack(job_id, True) is JobStatus.PENDING

    await broker.claim("worker-a")
    assert await broker.nack(job_id, True) is JobStatus.FAILED_PERMANENT

    record = await _load(database, job_id)
    assert record.attempt_count == 2
    assert record.attempt_count <= record.max_attempts


@pytest.mark.asyncio
async def test_nack_delay_hides_job_until_available(broker, enqueue):
    job_id = await enqueue()
    await broker.claim("worker-a")

    await broker.nack(job_id, True, delay_s=0.3)

    assert await broker.claim("worker-a") is None
    await asyncio.sleep(0.4)
    envelope = await broker.claim("worker-a")
    assert envelope is not None
    assert envelope.id == job_id


@pytest.mark.asyncio
async def test_nack_of_pending_job_raises_lease_lost(broker, enqueue):
    job_id = await enqueue()

    with pytest.raises(LeaseLostError):
        await broker.nack(job_id, True)


@pytest.mark.asyncio
async def test_release_expired_recovers_crashed_claim(database, settings, enqueue):
    short_lease = settings.model_copy(
        update={"job_visibility_timeout_s": 0.2, "job_heartbeat_interval_s": 0.1}
    )
    broker = SqlBroker(database, short_lease)
    job_id = await enqueue()

    # Worker claims and then "crashes" without acknowledging
    await broker.claim("crashed-worker")
    assert await broker.release_expired() == 0

    await asyncio.sleep(0.3)
    assert await broker.release_expired() == 1

    record = await _load(database, job_id)
    assert record.status == JobStatus.PENDING.value
    assert record.attempt_count == 1
    assert record.claimed_by is None
    assert "Lease expired" in record.last_error

    envelope = await broker.claim("healthy-worker")
    assert envelope.id == job_id
    assert envelope.attempt == 2

    # The crashed worker can no longer settle the job
    with pytest.raises(LeaseLostError):
        await broker.ack(job_id, worker_id="crashed-worker")


@pytest.mark.asyncio
async def test_release_expired_fails_job_on_last_attempt(database, settings, enqueue):
    short_lease = settings.model_copy(
        update={"job_visibility_timeout_s": 0.1, "job_heartbeat_interval_s": 0.05}
    )
    broker = SqlBroker(database, short_lease)
    job_id = await enqueue(max_attempts=1)

    await broker.claim("crashed-worker")
    await asyncio.sleep(0.2)
    await broker.release_expired()

    record = await _load(database, job_id)
    assert record.status == JobStatus.FAILED_PERMANENT.value
    assert record.attempt_count == 1


@pytest.mark.asyncio
async def test_heartbeat_extends_lease(database, settings, enqueue):
    short_lease = settings.model_copy(
        update={"job_visibility_timeout_s": 0.5, "job_heartbeat_interval_s": 0.1}
    )
    broker = SqlBroker(database, short_lease)
    job_id = await enqueue()
    await broker.claim("worker-a")

    await asyncio.sleep(0.3)
    assert await broker.heartbeat([job_id], "worker-a") == 1
    await asyncio.sleep(0.3)

    # Past the original expiry, but the heartbeat moved it forward
    assert await broker.release_expired() == 0
    assert (await _load(database, job_id)).status == JobStatus.IN_FLIGHT.value


@pytest.mark.asyncio
async def test_heartbeat_ignores_jobs_owned_by_others(broker, enqueue):
    job_id = await enqueue()
    await broker.claim("worker-a")

    assert await broker.heartbeat([job_id], "worker-b") == 0
    assert await broker.heartbeat([], "worker-a") == 0


@pytest.mark.asyncio
async def test_unreachable_database_raises_broker_unavailable(settings, tmp_path):
    from notifier.infra.database import Database

    missing = settings.model_copy(
        update={"database_url": f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'jobs.db'}"}
    )
    database = Database(missing)
    broker = SqlBroker(database, missing)

    try:
        with pytest.raises(BrokerUnavailableError) as exc_info:
            await broker.enqueue(
                JobCreate(type="WELCOME", payload={"name": "Ada"}, target="ada@example.com")
            )
        assert exc_info.value.status_code == 503
        assert exc_info.value.details["operation"] == "enqueue"
    finally:
        await database.close()
