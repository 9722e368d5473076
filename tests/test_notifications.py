"""Tests for the notification layer -- trigger rules, templates, senders."""

from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest

from src.chimera.notifications.channels import EmailSender, TelegramSender, WebhookSender
from src.chimera.notifications.dispatcher import NotificationDispatcher, should_notify
from src.chimera.notifications.schemas import (
    NotificationChannel,
    NotificationChannelType,
    NotificationEvent,
)
from src.chimera.notifications.templates import (
    TRUNCATION_SUFFIX,
    escape_markdown,
    render_comparison,
    render_differences,
    render_finish,
    render_start,
    truncate,
)
from src.chimera.sync.comparator import Comparator
from src.chimera.sync.schemas import (
    Execution,
    ExecutionStatus,
    ExecutionSummary,
    StoreSyncResult,
    StoreSyncStatus,
)
from tests.doubles import NOW, RecordingSender, make_record


def _channel(type_=NotificationChannelType.TELEGRAM, config=None, **toggles) -> NotificationChannel:
    return NotificationChannel(id=1, name="ops", type=type_, config=config or {}, **toggles)


def _execution(status: ExecutionStatus, results: list[StoreSyncResult] | None = None, error=None) -> Execution:
    results = results or []
    return Execution(
        source_integration_id=1,
        target_integration_id=2,
        status=status,
        results=results,
        summary=ExecutionSummary.from_results(results, execution_time_ms=4200),
        error=error,
    )


def _dispatcher(sender: RecordingSender, max_length: int = 4000) -> NotificationDispatcher:
    return NotificationDispatcher(senders={NotificationChannelType.TELEGRAM: sender}, max_length=max_length)


class TestTriggerRules:
    def test_start_follows_on_start(self):
        assert not should_notify(_channel(), NotificationEvent.START, ExecutionStatus.RUNNING)
        assert should_notify(_channel(on_start=True), NotificationEvent.START, ExecutionStatus.RUNNING)

    def test_success_follows_on_success(self):
        assert should_notify(_channel(), NotificationEvent.FINISH, ExecutionStatus.SUCCESS)
        assert not should_notify(_channel(on_success=False), NotificationEvent.FINISH, ExecutionStatus.SUCCESS)

    @pytest.mark.parametrize(
        "status", [ExecutionStatus.FAILED, ExecutionStatus.PARTIAL, ExecutionStatus.CANCELLED]
    )
    def test_unsuccessful_runs_follow_on_failure(self, status):
        assert should_notify(_channel(), NotificationEvent.FINISH, status)
        assert not should_notify(_channel(on_failure=False), NotificationEvent.FINISH, status)

    def test_inactive_channel_never_notifies(self):
        channel = _channel(active=False, on_start=True)
        assert not should_notify(channel, NotificationEvent.START, ExecutionStatus.RUNNING)
        assert not should_notify(channel, NotificationEvent.FINISH, ExecutionStatus.FAILED)


class TestDispatcher:
    async def test_finish_message_is_sent(self):
        sender = RecordingSender()
        execution = _execution(ExecutionStatus.SUCCESS)

        result = await _dispatcher(sender).notify(execution, _channel(), NotificationEvent.FINISH, config_name="Nightly")

        assert result.success
        [(channel_id, message)] = sender.messages
        assert channel_id == 1
        assert "Sync completed" in message
        assert "(Nightly)" in message

    async def test_toggle_off_sends_nothing(self):
        sender = RecordingSender()

        result = await _dispatcher(sender).notify(
            _execution(ExecutionStatus.SUCCESS), _channel(on_success=False), NotificationEvent.FINISH
        )

        assert result is None
        assert sender.messages == []

    async def test_missing_channel_sends_nothing(self):
        sender = RecordingSender()

        assert await _dispatcher(sender).notify(_execution(ExecutionStatus.FAILED), None, NotificationEvent.FINISH) is None

    async def test_sender_failure_is_swallowed(self):
        result = await _dispatcher(RecordingSender(fail=True)).notify(
            _execution(ExecutionStatus.FAILED), _channel(), NotificationEvent.FINISH
        )

        assert result.success is False
        assert result.detail == "smtp down"

    async def test_channel_type_without_sender(self):
        result = await _dispatcher(RecordingSender()).send(
            _channel(NotificationChannelType.WEBHOOK), "hello"
        )

        assert result.success is False

    async def test_long_messages_are_truncated(self):
        sender = RecordingSender()

        await _dispatcher(sender, max_length=100).send(_channel(), "x" * 500)

        [(_, message)] = sender.messages
        assert len(message) == 100
        assert message.endswith(TRUNCATION_SUFFIX)


class TestTemplates:
    def test_truncate_leaves_short_messages(self):
        assert truncate("short", 4000) == "short"

    def test_truncate_caps_length(self):
        message = truncate("y" * 5000, 4000)
        assert len(message) == 4000

    def test_start_message(self):
        execution = _execution(ExecutionStatus.RUNNING)

        message = render_start(execution, store_count=3, config_name="Nightly")

        assert "Sync started" in message
        assert "3 stores" in message
        assert execution.id in message

    @pytest.mark.parametrize(
        "status, header",
        [
            (ExecutionStatus.SUCCESS, "Sync completed"),
            (ExecutionStatus.PARTIAL, "Sync partially completed"),
            (ExecutionStatus.FAILED, "Sync failed"),
            (ExecutionStatus.CANCELLED, "Sync cancelled"),
        ],
    )
    def test_finish_header_by_status(self, status, header):
        assert header in render_finish(_execution(status))

    def test_finish_lists_stores_and_errors(self):
        results = [
            StoreSyncResult(store_id=1, store_name="Centro", registration="001", status=StoreSyncStatus.SUCCESS, sent=12, fetched=12),
            StoreSyncResult(store_id=2, store_name="Norte", registration="002", status=StoreSyncStatus.FAILED, error="upstream 503"),
        ]

        message = render_finish(_execution(ExecutionStatus.PARTIAL, results))

        assert "Centro (12 products)" in message
        assert "Norte: upstream 503" in message
        assert "Stores: 1/2 succeeded" in message
        assert "Duration: 4s" in message

    def test_escape_markdown(self):
        assert escape_markdown("POST discount_stores/batch_upload *failed* [x] `y`") == (
            r"POST discount\_stores/batch\_upload \*failed\* \[x] \`y\`"
        )
        assert escape_markdown("Centro 001") == "Centro 001"

    def test_finish_escapes_names_and_errors(self):
        results = [
            StoreSyncResult(
                store_id=1,
                store_name="Loja_Centro",
                registration="001",
                status=StoreSyncStatus.FAILED,
                error="store_key 001: HTTP 500 on batch_upload",
            ),
        ]
        execution = _execution(ExecutionStatus.FAILED, results, error="run exceeded *max* time")

        message = render_finish(execution, config_name="nightly_sync")

        assert "(nightly\\_sync)" in message
        assert "Loja\\_Centro" in message
        assert "store\\_key 001: HTTP 500 on batch\\_upload" in message
        assert "run exceeded \\*max\\* time" in message
        assert "❌ *Sync failed*" in message

    def test_differences_omit_in_sync_stores(self):
        comparator = Comparator(critical_threshold=50, normal_threshold=1)
        in_sync = comparator.diff([make_record("A")], [make_record("A")], now=NOW, store_id="001")
        divergent = comparator.diff(
            [make_record("A", store_key="002")], [], now=NOW, store_id="002"
        )

        message = render_differences([in_sync, divergent], {"001": "Centro", "002": "Norte"})

        assert "Norte" in message
        assert "Centro" not in message
        assert "Missing in target: 1" in message

    def test_all_in_sync(self):
        comparator = Comparator(critical_threshold=50, normal_threshold=1)
        in_sync = comparator.diff([], [], now=NOW, store_id="001")

        assert render_differences([in_sync]) == "✅ All stores are in sync."
        assert "In sync: 1" in render_comparison([in_sync])


class TestTelegramSender:
    async def test_posts_to_bot_endpoint(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 9}})

        sender = TelegramSender(api_base="https://tg.example.com", transport=httpx.MockTransport(handler))
        channel = _channel(config={"bot_token": "abc", "chat_id": "-100"})

        result = await sender.send(channel, "hello")

        assert result.success
        assert result.detail == "message_id=9"
        assert captured[0].url.path == "/botabc/sendMessage"
        body = json.loads(captured[0].content)
        assert body["chat_id"] == "-100"
        assert body["text"] == "hello"
        assert body["parse_mode"] == "Markdown"

    async def test_ok_false_is_unsuccessful(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False, "description": "chat not found"})

        sender = TelegramSender(api_base="https://tg.example.com", transport=httpx.MockTransport(handler))

        result = await sender.send(_channel(config={"bot_token": "abc", "chat_id": "1"}), "hello")

        assert result.success is False
        assert result.detail == "chat not found"

    async def test_incomplete_config_skips_network(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        sender = TelegramSender(api_base="https://tg.example.com", transport=httpx.MockTransport(handler))

        result = await sender.send(_channel(config={"bot_token": "abc"}), "hello")

        assert result.success is False

    async def test_http_error_propagates_to_dispatcher(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        sender = TelegramSender(api_base="https://tg.example.com", transport=httpx.MockTransport(handler))
        dispatcher = NotificationDispatcher(senders={NotificationChannelType.TELEGRAM: sender}, max_length=4000)

        result = await dispatcher.send(_channel(config={"bot_token": "abc", "chat_id": "1"}), "hello")

        assert result.success is False


class TestWebhookSender:
    async def test_uses_configured_method_and_headers(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(204)

        sender = WebhookSender(transport=httpx.MockTransport(handler))
        channel = _channel(
            NotificationChannelType.WEBHOOK,
            config={"webhook_url": "https://hooks.example.com/sync", "method": "PUT", "headers": {"X-Key": "k"}},
        )

        result = await sender.send(channel, "done")

        assert result.success
        request = captured[0]
        assert request.method == "PUT"
        assert request.headers["X-Key"] == "k"
        assert json.loads(request.content)["message"] == "done"

    async def test_missing_url(self):
        result = await WebhookSender().send(_channel(NotificationChannelType.WEBHOOK), "done")

        assert result.success is False


class TestEmailSender:
    async def test_sends_through_smtp_with_tls_and_login(self):
        channel = _channel(
            NotificationChannelType.EMAIL,
            config={
                "smtp_host": "smtp.example.com",
                "smtp_user": "bot",
                "smtp_password": "secret",
                "from_email": "bot@example.com",
                "to_emails": ["ops@example.com", "dev@example.com"],
            },
        )

        with patch("src.chimera.notifications.channels.smtplib.SMTP") as smtp:
            result = await EmailSender().send(channel, "body text")

        server = smtp.return_value.__enter__.return_value
        smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "secret")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "ops@example.com, dev@example.com"
        assert result.success

    async def test_missing_recipients(self):
        channel = _channel(NotificationChannelType.EMAIL, config={"smtp_host": "smtp.example.com", "from_email": "a@b.co"})

        result = await EmailSender().send(channel, "body")

        assert result.success is False
