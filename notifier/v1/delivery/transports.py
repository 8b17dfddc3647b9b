"""
Delivery transports.

Each transport turns a rendered message into one delivery attempt and reports
a DeliveryOutcome. Provider rejections and network errors come back as
unsuccessful outcomes; the pipeline decides what a failure means for the job.
"""

import uuid
from dataclasses import asdict, dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any

import aiosmtplib
import httpx

from notifier.config.logging import get_logger
from notifier.config.settings import Settings
from notifier.v1.delivery.templates import RenderedMessage

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    success: bool
    provider_id: str
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class LogTransport:
    """Development transport: writes the message to the log and succeeds."""

    name = "log"

    async def deliver(self, target: str, message: RenderedMessage) -> DeliveryOutcome:
        message_id = f"log-{uuid.uuid4().hex}"
        logger.info(
            "mock_email",
            to=target,
            subject=message.subject,
            body=message.body,
            message_id=message_id,
        )
        return DeliveryOutcome(success=True, provider_id=self.name, message_id=message_id)

    async def verify(self) -> None:
        logger.info("email_transport_ready", provider=self.name, mode="log only")

    @classmethod
    def from_settings(cls, settings: Settings) -> "LogTransport":
        return cls()


class SmtpTransport:
    """SMTP delivery via aiosmtplib (any provider: Outlook, Zoho, custom...)."""

    name = "smtp"

    def __init__(
        self,
        hostname: str,
        port: int,
        username: str | None,
        password: str | None,
        from_address: str,
        from_name: str = "",
        use_tls: bool = False,
        timeout: float = 30.0,
        name: str | None = None,
    ):
        self.hostname = hostname
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout
        if name:
            self.name = name

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpTransport":
        return cls(
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_address=settings.email_from,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_secure,
            timeout=settings.delivery_timeout_s,
        )

    @classmethod
    def gmail(cls, settings: Settings) -> "SmtpTransport":
        """Gmail over STARTTLS with an app password."""
        return cls(
            hostname="smtp.gmail.com",
            port=587,
            username=settings.gmail_user,
            password=settings.gmail_app_password,
            from_address=settings.email_from,
            from_name=settings.email_from_name,
            use_tls=False,
            timeout=settings.delivery_timeout_s,
            name="gmail",
        )

    def build_message(self, target: str, message: RenderedMessage) -> EmailMessage:
        email_msg = EmailMessage()
        email_msg["From"] = formataddr((self.from_name, self.from_address))
        email_msg["To"] = target
        email_msg["Subject"] = message.subject
        email_msg["Message-ID"] = make_msgid(domain=self.from_address.rpartition("@")[2] or None)
        email_msg.set_content(message.body)
        if message.html:
            email_msg.add_alternative(message.html, subtype="html")
        return email_msg

    def _connection_options(self) -> dict[str, Any]:
        # Implicit TLS on 465, STARTTLS negotiated automatically otherwise
        return {
            "hostname": self.hostname,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "use_tls": self.use_tls,
            "timeout": self.timeout,
        }

    async def deliver(self, target: str, message: RenderedMessage) -> DeliveryOutcome:
        email_msg = self.build_message(target, message)

        try:
            refused, response = await aiosmtplib.send(email_msg, **self._connection_options())
        except (aiosmtplib.SMTPException, OSError) as e:
            return DeliveryOutcome(
                success=False,
                provider_id=self.name,
                error=f"{type(e).__name__}: {e}",
            )

        if refused:
            return DeliveryOutcome(
                success=False,
                provider_id=self.name,
                error=f"Recipient refused: {refused}",
            )

        logger.info(
            "email_sent",
            provider=self.name,
            to=target,
            message_id=email_msg["Message-ID"],
            response=response,
        )
        return DeliveryOutcome(
            success=True, provider_id=self.name, message_id=email_msg["Message-ID"]
        )

    async def verify(self) -> None:
        smtp = aiosmtplib.SMTP(**self._connection_options())
        async with smtp:
            await smtp.noop()
        logger.info("email_transport_ready", provider=self.name, host=self.hostname)


class HttpApiTransport:
    """
    Delivery through a JSON email API.

    Sends ``{"from", "to", "subject", "text", "html"}`` with a bearer token and
    reads the provider message id from the ``id`` (or ``message_id``) field.
    """

    name = "http_api"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_address: str,
        from_name: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpApiTransport":
        return cls(
            api_url=settings.email_api_url,
            api_key=settings.email_api_key,
            from_address=settings.email_from,
            from_name=settings.email_from_name,
            timeout=settings.delivery_timeout_s,
        )

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    async def deliver(self, target: str, message: RenderedMessage) -> DeliveryOutcome:
        body = {
            "from": formataddr((self.from_name, self.from_address)),
            "to": [target],
            "subject": message.subject,
            "text": message.body,
        }
        if message.html:
            body["html"] = message.html

        try:
            response = await self.client.post(self.api_url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            return DeliveryOutcome(
                success=False, provider_id=self.name, error=f"{type(e).__name__}: {e}"
            )

        if response.status_code >= 400:
            return DeliveryOutcome(
                success=False,
                provider_id=self.name,
                error=f"Provider rejected message ({response.status_code}): {response.text[:200]}",
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        message_id = data.get("id") or data.get("message_id") or response.headers.get("x-message-id")

        return DeliveryOutcome(success=True, provider_id=self.name, message_id=message_id)

    async def verify(self) -> None:
        # Any HTTP answer proves the endpoint is reachable
        await self.client.request("HEAD", self.api_url, headers=self._headers())
        logger.info("email_transport_ready", provider=self.name, url=self.api_url)

    async def aclose(self) -> None:
        await self.client.aclose()
