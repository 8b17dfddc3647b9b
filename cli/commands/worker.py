"""Worker process wiring: database, broker, transport, pipeline and signals"""

import asyncio
import signal

from notifier.config.logging import get_logger, setup_logging
from notifier.config.settings import Settings
from notifier.infra.database import Database
from notifier.v1.delivery.pipeline import DeliveryPipeline
from notifier.v1.delivery.registry_init import build_transport
from notifier.v1.jobs.broker import SqlBroker
from notifier.v1.jobs.worker import JobWorker

logger = get_logger(__name__)


class TransportUnavailableError(Exception):
    """The configured delivery provider failed its startup check."""


async def run_worker(settings: Settings, shutdown_timeout_s: float = 30.0) -> None:
    """Verify the transport, then run a worker until SIGINT or SIGTERM."""
    setup_logging(settings)

    transport = build_transport(settings)
    try:
        await transport.verify()
    except Exception as e:
        logger.error("email_transport_verify_failed", provider=transport.name, error=str(e))
        raise TransportUnavailableError(f"{transport.name}: {e}") from e

    database = Database(settings)
    worker = JobWorker(
        settings=settings,
        broker=SqlBroker(database, settings),
        pipeline=DeliveryPipeline.from_settings(settings, transport),
    )

    loop = asyncio.get_running_loop()
    shutdown_tasks: list[asyncio.Task] = []

    def _on_signal(sig: signal.Signals) -> None:
        shutdown_tasks.append(asyncio.ensure_future(_shutdown(worker, sig, shutdown_timeout_s)))

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig)

    try:
        await worker.start()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        try:
            # Surfaces errors raised by worker.stop()
            await asyncio.gather(*shutdown_tasks)
        finally:
            aclose = getattr(transport, "aclose", None)
            if aclose is not None:
                await aclose()
            await database.close()


async def _shutdown(worker: JobWorker, sig: signal.Signals, timeout_s: float) -> None:
    logger.info("shutdown_signal_received", signal=sig.name, worker_id=worker.worker_id)
    await worker.stop(timeout_s)


async def init_database(settings: Settings) -> None:
    """Create the job tables if they do not exist."""
    database = Database(settings)
    try:
        await database.create_schema()
    finally:
        await database.close()
