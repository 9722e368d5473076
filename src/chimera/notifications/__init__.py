"""Notification layer -- sync run summaries delivered to Telegram, email or webhooks.

Components:
- schemas: NotificationChannel (with on_start/on_success/on_failure toggles), SendResult
- templates: start / finish / comparison message rendering
- channels: TelegramSender, EmailSender, WebhookSender
- dispatcher: NotificationDispatcher (trigger rules, truncation, error swallowing)
"""
