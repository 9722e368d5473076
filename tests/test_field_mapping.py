"""Tests for RP / CresceVendas field mapping."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from src.chimera.integrations.field_mapping import (
    daily_window,
    from_crescevendas_line,
    from_rp_product,
    parse_datetime,
    to_crescevendas_line,
)
from tests.doubles import NOW, make_record

TZ = ZoneInfo("America/Sao_Paulo")


class TestFromRPProduct:
    def test_portuguese_field_names(self):
        record = from_rp_product({"codigo": 789, "preco": "12.90", "precoVenda2": 9.9, "limite": 5}, "001")

        assert record.code == "789"
        assert (record.price, record.final_price, record.limit) == (12.9, 9.9, 5)
        assert record.store_id == "001"

    def test_missing_promotional_price_falls_back_to_list_price(self):
        record = from_rp_product({"code": "A", "price": 4.5}, "001")

        assert record.final_price == 4.5
        assert record.limit == 1000

    def test_incomplete_product_is_skipped(self):
        assert from_rp_product({"codigo": "A"}, "001") is None
        assert from_rp_product({"preco": 1.0}, "001") is None

    def test_non_numeric_values_are_skipped(self):
        assert from_rp_product({"codigo": "A", "preco": "12,50"}, "001") is None
        assert from_rp_product({"codigo": "A", "preco": 1.0, "limite": "many"}, "001") is None
        assert from_rp_product({"codigo": {"nested": 1}, "preco": 1.0}, "001") is None

    def test_window_is_applied(self):
        window = daily_window(NOW, TZ)

        record = from_rp_product({"codigo": "A", "preco": 1}, "001", window)

        assert record.starts_at == window[0]
        assert record.expires_at == window[1]


class TestDailyWindow:
    def test_window_spans_local_day(self):
        start, end = daily_window(NOW, TZ)

        assert (start.hour, start.minute) == (6, 0)
        assert (end.hour, end.minute, end.second) == (23, 59, 59)
        assert start.date() == NOW.astimezone(TZ).date()

    def test_window_follows_local_date_after_utc_midnight(self):
        # 01:00 UTC is still the previous evening in Sao Paulo
        start, _ = daily_window(datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc), TZ)

        assert start.day == 10


class TestCresceVendasLines:
    def test_naive_dates_are_local(self):
        record = from_crescevendas_line(
            {"code": "A", "price": 10, "final_price": 8, "start_date": "2026-03-10T06:00"}, "001", TZ
        )

        assert record.starts_at.utcoffset() == TZ.utcoffset(datetime(2026, 3, 10))
        assert record.expires_at is None

    def test_line_without_prices_is_skipped(self):
        assert from_crescevendas_line({"code": "A", "price": 10}, "001", TZ) is None

    def test_malformed_line_is_skipped(self):
        assert from_crescevendas_line({"code": "A", "price": "n/a", "final_price": 8}, "001", TZ) is None

    def test_unparseable_date_is_dropped(self):
        assert parse_datetime("yesterday", TZ) is None

    def test_outbound_line(self):
        line = to_crescevendas_line(make_record("A", 10.0, 8.0, limit=0), default_limit=250)

        assert line == {"code": "A", "price": 10.0, "final_price": 8.0, "limit": 250}
