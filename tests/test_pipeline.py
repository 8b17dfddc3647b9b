import asyncio
from datetime import UTC, datetime

import pytest

from notifier.v1.core.exceptions import DeliveryError, UnknownJobTypeError
from notifier.v1.delivery.pipeline import DeliveryPipeline
from notifier.v1.jobs.models import JobStatus
from notifier.v1.jobs.schemas import JobEnvelope
from tests.conftest import BOOKING_PAYLOAD, RecordingTransport


def _envelope(job_type: str = "BOOKING_CONFIRMATION", payload: dict | None = None) -> JobEnvelope:
    return JobEnvelope(
        id=1,
        type=job_type,
        payload=BOOKING_PAYLOAD if payload is None else payload,
        target="ada@example.com",
        status=JobStatus.IN_FLIGHT,
        attempt_count=0,
        max_attempts=3,
        created_at=datetime.now(UTC),
    )


class SlowTransport(RecordingTransport):
    async def deliver(self, target, message):
        await asyncio.sleep(1)
        return await super().deliver(target, message)


@pytest.mark.asyncio
async def test_run_renders_and_delivers():
    transport = RecordingTransport()
    pipeline = DeliveryPipeline(transport, timeout_s=1)

    outcome = await pipeline.run(_envelope())

    assert outcome.success
    assert outcome.message_id == "msg-1"
    target, message = transport.deliveries[0]
    assert target == "ada@example.com"
    assert message.subject == 'Booking Confirmed: "Standup"'


@pytest.mark.asyncio
async def test_unsuccessful_outcome_raises_delivery_error():
    pipeline = DeliveryPipeline(RecordingTransport(failures=1, error="550 mailbox full"), timeout_s=1)

    with pytest.raises(DeliveryError, match="550 mailbox full") as exc_info:
        await pipeline.run(_envelope())

    assert exc_info.value.details["provider"] == "recording"


@pytest.mark.asyncio
async def test_delivery_timeout_raises_delivery_error():
    pipeline = DeliveryPipeline(SlowTransport(), timeout_s=0.05)

    with pytest.raises(DeliveryError, match="timed out after 0.05s"):
        await pipeline.run(_envelope())


@pytest.mark.asyncio
async def test_transport_exception_is_wrapped():
    class BrokenTransport(RecordingTransport):
        async def deliver(self, target, message):
            raise ConnectionResetError("peer reset")

    pipeline = DeliveryPipeline(BrokenTransport(), timeout_s=1)

    with pytest.raises(DeliveryError, match="ConnectionResetError: peer reset"):
        await pipeline.run(_envelope())


@pytest.mark.asyncio
async def test_unknown_type_never_reaches_transport():
    transport = RecordingTransport()
    pipeline = DeliveryPipeline(transport, timeout_s=1)

    with pytest.raises(UnknownJobTypeError):
        await pipeline.run(_envelope("SMS_REMINDER", {}))

    assert transport.deliveries == []


def test_from_settings_uses_delivery_timeout(settings):
    pipeline = DeliveryPipeline.from_settings(settings, RecordingTransport())

    assert pipeline.timeout_s == settings.delivery_timeout_s
