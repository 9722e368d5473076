"""Notification senders, one per channel type.

Each sender turns a rendered message into a delivery. Incomplete channel
config is reported as an unsuccessful SendResult; transport errors propagate
to the NotificationDispatcher, which logs and swallows them. Blocking SMTP
calls are wrapped in asyncio.to_thread() so they never stall the event loop.
"""

from __future__ import annotations

import asyncio
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr

import httpx
import structlog

from src.chimera.config import get_settings
from src.chimera.notifications.schemas import (
    NotificationChannel,
    NotificationChannelType,
    SendResult,
)

logger = structlog.get_logger(__name__)


class NotificationSender(ABC):
    """Delivers a rendered message through one channel type."""

    @abstractmethod
    async def send(self, channel: NotificationChannel, message: str) -> SendResult:
        ...


class TelegramSender(NotificationSender):
    """Telegram Bot API `sendMessage` over httpx."""

    def __init__(
        self,
        api_base: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base = (api_base or get_settings().TELEGRAM_API_BASE).rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def send(self, channel: NotificationChannel, message: str) -> SendResult:
        config = channel.telegram()
        if not config.bot_token or not config.chat_id:
            return SendResult(success=False, detail="bot_token and chat_id are required")

        payload: dict = {"chat_id": config.chat_id, "text": message, "disable_web_page_preview": True}
        if config.parse_mode:
            payload["parse_mode"] = config.parse_mode

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(f"{self._api_base}/bot{config.bot_token}/sendMessage", json=payload)
            response.raise_for_status()
            data = response.json()

        if not data.get("ok", False):
            return SendResult(success=False, detail=str(data.get("description", "telegram rejected message")))
        message_id = (data.get("result") or {}).get("message_id")
        return SendResult(success=True, detail=f"message_id={message_id}")


class EmailSender(NotificationSender):
    """SMTP delivery (STARTTLS when use_tls) via smtplib in a worker thread."""

    def _build_message(self, channel: NotificationChannel, message: str) -> EmailMessage:
        config = channel.email()
        msg = EmailMessage()
        msg["Subject"] = config.subject
        msg["From"] = formataddr((config.from_name, config.from_email)) if config.from_name else config.from_email
        msg["To"] = ", ".join(config.to_emails)
        msg.set_content(message)
        return msg

    async def send(self, channel: NotificationChannel, message: str) -> SendResult:
        config = channel.email()
        if not config.smtp_host or not config.from_email or not config.to_emails:
            return SendResult(success=False, detail="smtp_host, from_email and to_emails are required")

        msg = self._build_message(channel, message)

        def _send() -> None:
            with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=30) as server:
                if config.use_tls:
                    server.starttls()
                if config.smtp_user:
                    server.login(config.smtp_user, config.smtp_password)
                server.send_message(msg)

        await asyncio.to_thread(_send)
        return SendResult(success=True, detail=f"sent to {len(config.to_emails)} recipient(s)")


class WebhookSender(NotificationSender):
    """JSON POST/PUT/PATCH to an arbitrary URL with custom headers."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def send(self, channel: NotificationChannel, message: str) -> SendResult:
        config = channel.webhook()
        if not config.webhook_url:
            return SendResult(success=False, detail="webhook_url is required")

        payload = {
            "channel": channel.name,
            "message": message,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        async with httpx.AsyncClient(timeout=config.timeout, transport=self._transport) as client:
            response = await client.request(
                config.method,
                config.webhook_url,
                json=payload,
                headers={"Content-Type": "application/json", **config.headers},
            )
            response.raise_for_status()
        return SendResult(success=True, detail=f"HTTP {response.status_code}")


def default_senders(
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[NotificationChannelType, NotificationSender]:
    return {
        NotificationChannelType.TELEGRAM: TelegramSender(transport=transport),
        NotificationChannelType.EMAIL: EmailSender(),
        NotificationChannelType.WEBHOOK: WebhookSender(transport=transport),
    }
