"""Tests for the CresceVendas target adapter.

Covers campaign framing (name template, window, override flag), batch
upload success/failure, listing parsing across the payload shapes the API
returns, and the connectivity probe.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import httpx
import pytest

from src.chimera.integrations.crescevendas import CresceVendasAdapter
from src.chimera.integrations.schemas import CampaignConfig, CresceVendasConfig
from src.chimera.sync.errors import TargetFetchError, TargetUploadError
from tests.doubles import make_record

TZ = ZoneInfo("America/Sao_Paulo")
# 05:00 local (08:00 UTC): before the 06:00 campaign start
EARLY = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
# 12:00 local (15:00 UTC): after the campaign start
MIDDAY = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)

HEADERS = {"X-AdminUser-Email": "sync@example.com", "X-AdminUser-Token": "cv-token"}


def _config(**campaign) -> CresceVendasConfig:
    return CresceVendasConfig(
        base_url="https://cv.example.com",
        auth_headers=HEADERS,
        campaign=CampaignConfig(**campaign),
    )


def _adapter(handler, config: CresceVendasConfig | None = None, now: datetime = MIDDAY) -> CresceVendasAdapter:
    return CresceVendasAdapter(
        config or _config(),
        transport=httpx.MockTransport(handler),
        tz=TZ,
        clock=lambda: now,
    )


def _unused(request: httpx.Request) -> httpx.Response:
    raise AssertionError("no request expected")


class TestCampaignFraming:
    def test_window_uses_configured_start_before_it_passes(self):
        adapter = _adapter(_unused, now=EARLY)
        start, end = adapter.campaign_window()

        assert (start.hour, start.minute) == (6, 0)
        assert (end.hour, end.minute) == (23, 59)

    def test_window_starts_after_delay_once_start_has_passed(self):
        adapter = _adapter(_unused, config=_config(start_delay_minutes=5))
        start, _ = adapter.campaign_window()

        assert (start.hour, start.minute) == (12, 5)

    def test_payload_shape(self):
        adapter = _adapter(_unused, config=_config(name_template="{store} Descontos - {date} {time}"))
        records = [make_record("A", 10.0, 8.0, limit=0), make_record("B", 5.0, 4.5, limit=3)]

        payload = adapter.build_payload("001", records)

        assert payload["override"] == 1
        assert payload["store_registrations"] == ["001"]
        assert payload["name"] == "001 Descontos - 2026-03-10 12:00"
        assert payload["start_date"] == "2026-03-10T12:05"
        assert payload["end_date"] == "2026-03-10T23:59"
        assert payload["discount_store_lines"] == [
            {"code": "A", "price": 10.0, "final_price": 8.0, "limit": 1000},
            {"code": "B", "price": 5.0, "final_price": 4.5, "limit": 3},
        ]

    def test_override_disabled_sends_zero(self):
        adapter = _adapter(_unused, config=_config(override_existing=False))
        assert adapter.build_payload("001", [])["override"] == 0


class TestSendBatch:
    async def test_send_posts_framed_batch_with_auth_headers(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(201, json={"id": 77})

        adapter = _adapter(handler)
        result = await adapter.send_batch("001", [make_record("A")], batch_index=3)
        await adapter.aclose()

        request = captured[0]
        assert request.method == "POST"
        assert request.url.path == "/admin/integrations/discount_stores/batch_upload"
        assert request.headers["X-AdminUser-Email"] == "sync@example.com"
        assert request.headers["X-AdminUser-Token"] == "cv-token"
        assert json.loads(request.content)["discount_store_lines"][0]["code"] == "A"
        assert result.batch_index == 3
        assert result.sent == 1
        assert result.campaign_id == "77"

    async def test_http_error_raises_upload_error_with_batch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        adapter = _adapter(handler)
        batch = [make_record("A"), make_record("B")]
        with pytest.raises(TargetUploadError) as exc_info:
            await adapter.send_batch("001", batch)
        await adapter.aclose()

        assert exc_info.value.records == batch

    async def test_error_body_raises_upload_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "invalid store registration"})

        adapter = _adapter(handler)
        with pytest.raises(TargetUploadError, match="invalid store registration"):
            await adapter.send_batch("001", [make_record("A")])
        await adapter.aclose()


class TestListing:
    async def test_fetch_existing_queries_todays_window(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(
                200,
                json={"response": {"discounts": [{"code": "A", "price": 10, "final_price": 8}]}},
            )

        adapter = _adapter(handler)
        records = await adapter.fetch_existing("001")
        await adapter.aclose()

        params = captured[0].url.params
        assert params["start_date"] == "2026-03-10T00:01:00"
        assert params["end_date"] == "2026-03-10T23:59:00"
        assert params["store_registration"] == "001"
        assert [(r.code, r.price, r.store_id) for r in records] == [("A", 10.0, "001")]

    def test_parse_listing_campaign_dates_frame_their_lines(self):
        adapter = _adapter(_unused)
        data = {
            "discounts": [
                {
                    "start_date": "2026-03-10T06:00",
                    "end_date": "2026-03-10T23:59",
                    "discount_store_lines": [
                        {"code": "A", "price": 10, "final_price": 8},
                        {"code": "B", "price": 5, "final_price": 5},
                    ],
                }
            ]
        }

        records = adapter.parse_listing("001", data)

        assert [r.code for r in records] == ["A", "B"]
        assert records[0].starts_at.astimezone(TZ).hour == 6
        assert records[0].expires_at.astimezone(TZ).minute == 59

    def test_parse_listing_accepts_flat_lines_and_skips_incomplete(self):
        adapter = _adapter(_unused)
        data = {"discount_store_lines": [{"code": "A", "price": 1, "final_price": 1}, {"code": "B"}]}

        assert [r.code for r in adapter.parse_listing("001", data)] == ["A"]

    async def test_fetch_failure_raises_target_fetch_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        adapter = _adapter(handler)
        with pytest.raises(TargetFetchError):
            await adapter.fetch_existing("001")
        await adapter.aclose()


class TestConnection:
    async def test_missing_auth_header_fails_without_network(self):
        config = CresceVendasConfig(base_url="https://cv.example.com", auth_headers={"X-AdminUser-Email": "a@b.co"})
        adapter = _adapter(_unused, config=config)
        result = await adapter.test_connection()
        await adapter.aclose()

        assert result.success is False
        assert "X-AdminUser-Token" in result.error

    async def test_probe_requests_a_single_line(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["limit"] == "1"
            return httpx.Response(200, json={"discounts": []})

        adapter = _adapter(handler)
        result = await adapter.test_connection()
        await adapter.aclose()

        assert result.success is True
        assert result.data["status"] == 200

    async def test_probe_reports_http_status_on_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403)

        adapter = _adapter(handler)
        result = await adapter.test_connection()
        await adapter.aclose()

        assert result.success is False
        assert result.data["status"] == 403
