"""Pydantic schemas for notification channels and delivery results."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class NotificationChannelType(str, Enum):
    TELEGRAM = "TELEGRAM"
    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"


class NotificationEvent(str, Enum):
    """START fires when a run begins; FINISH once it reaches a terminal state."""

    START = "START"
    FINISH = "FINISH"


# ── Channel Configs ─────────────────────────────────────────────────────────


class TelegramConfig(BaseModel):
    bot_token: str = ""
    chat_id: str = ""
    parse_mode: Literal["HTML", "Markdown", "MarkdownV2"] | None = "Markdown"


class EmailConfig(BaseModel):
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str | None = None
    to_emails: list[str] = Field(default_factory=list)
    use_tls: bool = True
    subject: str = "Chimera sync notification"


class WebhookConfig(BaseModel):
    webhook_url: str = ""
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = 10.0


class NotificationChannel(BaseModel):
    """A delivery channel plus the per-channel trigger toggles."""

    id: int
    name: str
    type: NotificationChannelType
    active: bool = True
    config: dict = Field(default_factory=dict)
    on_start: bool = False
    on_success: bool = True
    on_failure: bool = True

    def telegram(self) -> TelegramConfig:
        return TelegramConfig.model_validate(self.config)

    def email(self) -> EmailConfig:
        return EmailConfig.model_validate(self.config)

    def webhook(self) -> WebhookConfig:
        return WebhookConfig.model_validate(self.config)


class SendResult(BaseModel):
    """Outcome of one delivery attempt. Never raised, always returned."""

    success: bool
    detail: str = ""
