"""Notification dispatcher -- turns execution lifecycle events into channel messages.

Trigger rules per channel:
- START  -> on_start
- FINISH with SUCCESS -> on_success
- FINISH with FAILED / PARTIAL / CANCELLED -> on_failure

Delivery failures are logged and swallowed: a notification can never fail
or retry the sync run that produced it.
"""

from __future__ import annotations

import structlog

from src.chimera.config import get_settings
from src.chimera.notifications.channels import NotificationSender, default_senders
from src.chimera.notifications.schemas import (
    NotificationChannel,
    NotificationChannelType,
    NotificationEvent,
    SendResult,
)
from src.chimera.notifications.templates import (
    render_comparison,
    render_finish,
    render_start,
    truncate,
)
from src.chimera.sync.schemas import ComparisonResult, Execution, ExecutionStatus

logger = structlog.get_logger(__name__)


def should_notify(channel: NotificationChannel, event: NotificationEvent, status: ExecutionStatus) -> bool:
    if not channel.active:
        return False
    if event == NotificationEvent.START:
        return channel.on_start
    if status == ExecutionStatus.SUCCESS:
        return channel.on_success
    return channel.on_failure


class NotificationDispatcher:
    """Routes rendered messages to the sender for each channel type.

    Args:
        senders: Channel type -> sender (defaults to Telegram/Email/Webhook).
        max_length: Messages are truncated to this many characters.
    """

    def __init__(
        self,
        senders: dict[NotificationChannelType, NotificationSender] | None = None,
        max_length: int | None = None,
    ) -> None:
        self._senders = senders if senders is not None else default_senders()
        self._max_length = max_length or get_settings().NOTIFICATION_MAX_LENGTH

    async def notify(
        self,
        execution: Execution,
        channel: NotificationChannel | None,
        event: NotificationEvent,
        *,
        store_count: int = 0,
        config_name: str | None = None,
    ) -> SendResult | None:
        """Send the message for `event` if the channel's toggles ask for it.

        Returns None when nothing was sent.
        """
        if channel is None or not should_notify(channel, event, execution.status):
            return None

        if event == NotificationEvent.START:
            message = render_start(execution, store_count, config_name)
        else:
            message = render_finish(execution, config_name)

        return await self.send(channel, message, execution_id=execution.id, event=event.value)

    async def notify_comparison(
        self,
        comparisons: list[ComparisonResult],
        channel: NotificationChannel | None,
        names: dict[str, str] | None = None,
    ) -> SendResult | None:
        if channel is None or not channel.active:
            return None
        return await self.send(channel, render_comparison(comparisons, names), event="COMPARISON")

    async def send(self, channel: NotificationChannel, message: str, **context: str) -> SendResult:
        """Deliver a message; never raises."""
        sender = self._senders.get(channel.type)
        if sender is None:
            logger.warning("notifications.no_sender", channel_id=channel.id, channel_type=channel.type.value)
            return SendResult(success=False, detail=f"no sender for {channel.type.value}")

        try:
            result = await sender.send(channel, truncate(message, self._max_length))
        except Exception as exc:
            logger.warning(
                "notifications.send_failed",
                channel_id=channel.id,
                channel_type=channel.type.value,
                error=str(exc),
                **context,
            )
            return SendResult(success=False, detail=str(exc) or type(exc).__name__)

        if result.success:
            logger.info("notifications.sent", channel_id=channel.id, channel_type=channel.type.value, **context)
        else:
            logger.warning(
                "notifications.rejected",
                channel_id=channel.id,
                channel_type=channel.type.value,
                detail=result.detail,
                **context,
            )
        return result
