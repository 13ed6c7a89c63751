"""
Outgoing mail for sign-in links and account notices.

``EmailService`` renders a named template and hands the result to a
provider (SMTP or the Resend API). Recipients are rate limited per hashed
address so a leaked form cannot be used to flood an inbox.
"""

from __future__ import annotations

import hashlib
import ssl
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from email.message import EmailMessage
from typing import TYPE_CHECKING, Any

import aiosmtplib
import httpx
import structlog
from starlette.requests import HTTPConnection

from rankshare.config import Settings
from rankshare.email.templates import login_link, password_changed

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()

Rendered = tuple[str, str, str]

RESEND_URL = "https://api.resend.com/emails"


def mask_address(address: str) -> str:
    """``alice@example.com`` -> ``a***@example.com`` for log lines."""
    local, _, domain = address.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


class BaseEmailProvider(ABC):
    """A way of delivering one rendered message."""

    name = "base"

    def __init__(self, from_address: str, from_name: str) -> None:
        self.from_address = from_address
        self.from_name = from_name

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_address}>"

    @abstractmethod
    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        """Deliver or raise."""

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """Deliver and report success; failures are logged, never raised."""
        try:
            await self.deliver(to_email, subject, html_body, text_body)
        except Exception:
            logger.exception("email_send_failed", to=mask_address(to_email), provider=self.name)
            return False
        logger.info("email_sent", to=mask_address(to_email), subject=subject, provider=self.name)
        return True


class SMTPProvider(BaseEmailProvider):
    """Multipart text/html mail over SMTP with aiosmtplib."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        super().__init__(from_address, from_name)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def build_message(self, to_email: str, subject: str, html_body: str, text_body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")
        return message

    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        await aiosmtplib.send(
            self.build_message(to_email, subject, html_body, text_body),
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.use_tls,
            tls_context=ssl.create_default_context() if self.use_tls else None,
        )


class ResendProvider(BaseEmailProvider):
    """Resend HTTP API."""

    name = "resend"

    def __init__(self, api_key: str, from_address: str, from_name: str) -> None:
        super().__init__(from_address, from_name)
        self.api_key = api_key

    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [to_email],
                    "subject": subject,
                    "html": html_body,
                    "text": text_body,
                },
            )
            response.raise_for_status()


def create_provider(settings: Settings) -> BaseEmailProvider:
    """Pick the provider named by ``email_provider``."""
    provider_name = settings.email_provider.lower()
    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_use_tls,
        )
    if provider_name == "resend":
        return ResendProvider(
            api_key=settings.resend_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


# template name -> renderer taking the send_template context
TEMPLATES: dict[str, Callable[[Mapping[str, Any]], Rendered]] = {
    "login_link": lambda ctx: login_link(ctx.get("link_url", ""), ctx.get("expires_minutes", 15)),
    "password_changed": lambda ctx: password_changed(ctx.get("display_name")),
}


class EmailService:
    """Template rendering plus a per-recipient hourly send limit."""

    RATE_LIMIT_WINDOW = 3600

    def __init__(
        self,
        provider: BaseEmailProvider,
        redis: Redis | None = None,
        rate_limit_max: int = 5,
    ) -> None:
        self.provider = provider
        self._redis = redis
        self.rate_limit_max = rate_limit_max

    @staticmethod
    def _recipient_key(address: str) -> str:
        digest = hashlib.sha256(address.strip().lower().encode()).hexdigest()
        return f"email_rate:{digest}"

    async def _within_rate_limit(self, address: str) -> bool:
        if self._redis is None:
            return True
        key = self._recipient_key(address)
        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, self.RATE_LIMIT_WINDOW)
        return count <= self.rate_limit_max

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str) -> bool:
        """Send unless the recipient is over the limit. False when limited or failed."""
        if not await self._within_rate_limit(to):
            logger.warning("email_rate_limited", to=mask_address(to), subject=subject)
            return False
        return await self.provider.send(to, subject, html_body, text_body)

    async def send_template(self, to: str, template_name: str, context: Mapping[str, Any]) -> bool:
        """
        Render ``template_name`` with ``context`` and send it.

        Raises:
            ValueError: If the template name is unknown.
        """
        render = TEMPLATES.get(template_name)
        if render is None:
            msg = f"Unknown template: {template_name}"
            raise ValueError(msg)
        subject, html_body, text_body = render(context)
        return await self.send_email(to, subject, html_body, text_body)


def get_email_service(connection: HTTPConnection) -> EmailService:
    """Return the application's email service (FastAPI dependency)."""
    return connection.app.state.backend.email
