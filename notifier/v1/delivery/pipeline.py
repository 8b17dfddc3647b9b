"""
Render+deliver pipeline: one call per delivery attempt.
"""

import asyncio

from notifier.config.logging import get_logger
from notifier.config.settings import Settings
from notifier.v1.core.exceptions import DeliveryError
from notifier.v1.core.registries import Transport
from notifier.v1.delivery.templates import render_message
from notifier.v1.delivery.transports import DeliveryOutcome
from notifier.v1.jobs.schemas import JobEnvelope

logger = get_logger(__name__)


class DeliveryPipeline:
    """
    Selects the template for a job, renders it and hands it to the transport.

    Raises a PipelineError subclass on any failure: UnknownJobTypeError and
    TemplateError from rendering, DeliveryError from the transport (including
    timeouts). Returning normally means the transport accepted the message.
    """

    def __init__(self, transport: Transport, timeout_s: float):
        self.transport = transport
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: Settings, transport: Transport) -> "DeliveryPipeline":
        return cls(transport=transport, timeout_s=settings.delivery_timeout_s)

    async def run(self, envelope: JobEnvelope) -> DeliveryOutcome:
        message = render_message(envelope.type, envelope.payload)

        try:
            outcome = await asyncio.wait_for(
                self.transport.deliver(envelope.target, message),
                timeout=self.timeout_s,
            )
        except TimeoutError:
            raise DeliveryError(
                f"Delivery timed out after {self.timeout_s:g}s",
                {"provider": self.transport.name, "job_id": envelope.id},
            ) from None
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(
                f"{type(e).__name__}: {e}",
                {"provider": self.transport.name, "job_id": envelope.id},
            ) from e

        if not outcome.success:
            raise DeliveryError(
                outcome.error or "Transport reported failure",
                {"provider": outcome.provider_id, "job_id": envelope.id},
            )

        logger.debug(
            "message_delivered",
            job_id=envelope.id,
            provider=outcome.provider_id,
            message_id=outcome.message_id,
        )
        return outcome
