"""Tests for email templates and the email service."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from rankshare.email.service import BaseEmailProvider, EmailService, SMTPProvider, mask_address
from rankshare.email.templates import login_link, password_changed


class TestTemplates:
    def test_login_link_contains_url(self):
        subject, html, text = login_link("https://app.test/auth/callback?token=abc", 15)
        assert "sign-in link" in subject
        assert "https://app.test/auth/callback?token=abc" in text
        assert "15 minutes" in html

    def test_login_link_escapes_url_in_html(self):
        _, html, _ = login_link('https://app.test/?a=1&b="x"')
        assert "&amp;b=&quot;x&quot;" in html

    def test_password_changed_escapes_name(self):
        _, html, text = password_changed("<b>Eve</b>")
        assert "&lt;b&gt;Eve&lt;/b&gt;" in html
        assert "Hi <b>Eve</b>" in text

    def test_password_changed_without_name(self):
        _, _, text = password_changed(None)
        assert text.startswith("Hi there")


@pytest.fixture
def provider() -> AsyncMock:
    mock = AsyncMock(spec=BaseEmailProvider)
    mock.send.return_value = True
    return mock


class TestEmailService:
    async def test_send_template_renders_and_sends(self, provider: AsyncMock):
        service = EmailService(provider)
        sent = await service.send_template(
            "a@example.com", "login_link", {"link_url": "https://x.test/l", "expires_minutes": 5}
        )
        assert sent is True
        to, subject, _html, text = provider.send.await_args.args
        assert to == "a@example.com"
        assert "https://x.test/l" in text

    async def test_unknown_template(self, provider: AsyncMock):
        with pytest.raises(ValueError, match="Unknown template"):
            await EmailService(provider).send_template("a@example.com", "nope", {})

    async def test_rate_limit_per_recipient(self, provider: AsyncMock, fake_redis):
        service = EmailService(provider, redis=fake_redis, rate_limit_max=2)
        results = [await service.send_email("a@example.com", "s", "<p>h</p>", "t") for _ in range(3)]
        assert results == [True, True, False]
        assert provider.send.await_count == 2
        assert await service.send_email("b@example.com", "s", "<p>h</p>", "t") is True


class _BrokenProvider(BaseEmailProvider):
    name = "broken"

    async def deliver(self, to_email, subject, html_body, text_body):
        raise ConnectionError("smtp down")


class TestProviders:
    def test_mask_address(self):
        assert mask_address("alice@example.com") == "a***@example.com"
        assert mask_address("not-an-address") == "***"

    async def test_delivery_failure_reported_as_false(self):
        provider = _BrokenProvider("noreply@rankshare.test", "Rankshare")
        assert await provider.send("a@example.com", "s", "<p>h</p>", "t") is False

    def test_smtp_message_is_multipart(self):
        provider = SMTPProvider(
            host="localhost",
            port=25,
            username="",
            password="",
            from_address="noreply@rankshare.test",
            from_name="Rankshare",
            use_tls=False,
        )
        message = provider.build_message("a@example.com", "Hello", "<p>hi</p>", "hi")
        assert message["From"] == "Rankshare <noreply@rankshare.test>"
        assert message.is_multipart()
        assert [part.get_content_type() for part in message.iter_parts()] == ["text/plain", "text/html"]
