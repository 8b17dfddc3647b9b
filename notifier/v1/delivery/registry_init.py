"""
Transport registry initialization.

Registers every transport factory under its EMAIL_PROVIDER name.
"""

from notifier.config.logging import get_logger
from notifier.config.settings import EmailProvider, Settings
from notifier.v1.core.registries import Transport, transport_registry
from notifier.v1.delivery.transports import HttpApiTransport, LogTransport, SmtpTransport

logger = get_logger(__name__)


def register_transports() -> None:
    """Register all transport factories with the transport registry."""
    transport_registry.register(EmailProvider.LOG.value, LogTransport.from_settings)
    transport_registry.register(EmailProvider.SMTP.value, SmtpTransport.from_settings)
    transport_registry.register(EmailProvider.GMAIL.value, SmtpTransport.gmail)
    transport_registry.register(EmailProvider.HTTP_API.value, HttpApiTransport.from_settings)

    logger.debug("transports_registered", providers=transport_registry.list())


def build_transport(settings: Settings) -> Transport:
    """Instantiate the transport selected by EMAIL_PROVIDER."""
    provider = settings.email_provider.value
    if provider not in transport_registry:
        raise ValueError(
            f"EMAIL_PROVIDER={provider} has no transport. "
            f"Available: {', '.join(transport_registry.list())}"
        )

    transport = transport_registry.get(provider)(settings)
    logger.info("email_transport_selected", provider=transport.name)
    return transport


# Auto-register transports when module is imported
register_transports()
