from collections.abc import AsyncGenerator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from notifier.config.settings import Settings
from notifier.infra.database import Database
from notifier.main import create_app
from notifier.v1.delivery.pipeline import DeliveryPipeline
from notifier.v1.delivery.templates import RenderedMessage
from notifier.v1.delivery.transports import DeliveryOutcome
from notifier.v1.jobs.broker import SqlBroker
from notifier.v1.jobs.observers import JobOutcome
from notifier.v1.jobs.schemas import JobCreate
from notifier.v1.jobs.worker import JobWorker

BOOKING_PAYLOAD = {
    "bookingId": 42,
    "title": "Standup",
    "start": "2026-03-02T09:00:00Z",
    "end": "2026-03-02T09:15:00Z",
}


class RecordingTransport:
    """Transport double that fails the first ``failures`` deliveries."""

    name = "recording"

    def __init__(self, failures: int = 0, error: str = "451 Temporary local problem"):
        self.failures = failures
        self.error = error
        self.deliveries: list[tuple[str, RenderedMessage]] = []
        self.verified = False

    async def deliver(self, target: str, message: RenderedMessage) -> DeliveryOutcome:
        self.deliveries.append((target, message))
        if len(self.deliveries) <= self.failures:
            return DeliveryOutcome(success=False, provider_id=self.name, error=self.error)
        return DeliveryOutcome(
            success=True, provider_id=self.name, message_id=f"msg-{len(self.deliveries)}"
        )

    async def verify(self) -> None:
        self.verified = True


class RecordingObserver:
    def __init__(self):
        self.started: list[tuple[int, str, str, int]] = []
        self.completed: list[JobOutcome] = []
        self.failed: list[JobOutcome] = []

    def job_started(self, job_id: int, job_type: str, worker_id: str, attempt: int) -> None:
        self.started.append((job_id, job_type, worker_id, attempt))

    def job_completed(self, outcome: JobOutcome) -> None:
        self.completed.append(outcome)

    def job_failed(self, outcome: JobOutcome) -> None:
        self.failed.append(outcome)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for a throwaway SQLite queue with immediate retries."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        environment="development",
        debug=False,
        log_level="WARNING",
        email_provider="log",
        job_max_attempts=3,
        job_backoff_base_ms=0,
        job_backoff_jitter=0.0,
        job_visibility_timeout_s=30.0,
        job_heartbeat_interval_s=5.0,
        job_recovery_interval_s=5.0,
        job_poll_interval_ms=10,
        job_concurrency=2,
        delivery_timeout_s=2.0,
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Create a fresh job database for each test."""
    db = Database(settings)
    await db.create_schema()
    yield db
    await db.close()


@pytest.fixture
def broker(database, settings) -> SqlBroker:
    return SqlBroker(database, settings)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def make_worker(settings, broker, observer):
    """Build a worker around a given transport."""

    def _make(transport, **kwargs) -> JobWorker:
        kwargs.setdefault("observer", observer)
        kwargs.setdefault("worker_id", "test-worker")
        return JobWorker(
            settings=settings,
            broker=kwargs.pop("broker", broker),
            pipeline=DeliveryPipeline(transport, timeout_s=settings.delivery_timeout_s),
            **kwargs,
        )

    return _make


@pytest.fixture
def enqueue(broker):
    """Insert a job straight into the broker, bypassing producer validation."""

    async def _enqueue(
        job_type: str = "BOOKING_CONFIRMATION",
        payload: dict[str, Any] | None = None,
        target: str = "ada@example.com",
        max_attempts: int | None = None,
    ) -> int:
        return await broker.enqueue(
            JobCreate(
                type=job_type,
                payload=BOOKING_PAYLOAD if payload is None else payload,
                target=target,
                max_attempts=max_attempts,
            )
        )

    return _enqueue


@pytest.fixture
async def async_client(settings, database) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to an app sharing the test database."""
    app = create_app(settings, database)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
