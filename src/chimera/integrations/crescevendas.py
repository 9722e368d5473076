"""CresceVendas campaign adapter -- the sync target.

Uploads product batches as daily discount campaigns (one campaign per batch,
framed with name/start/end/override) and reads back the store's current
listing for the comparison step. Credentials are static headers
(X-AdminUser-Email / X-AdminUser-Token) merged into every request.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import httpx
import structlog

from src.chimera.config import get_settings
from src.chimera.integrations.adapter import TargetAdapter
from src.chimera.integrations.field_mapping import (
    from_crescevendas_line,
    parse_datetime,
    to_crescevendas_line,
)
from src.chimera.integrations.rp import join_url
from src.chimera.integrations.schemas import (
    BatchResult,
    CresceVendasConfig,
    IntegrationTestResult,
    ProductRecord,
)
from src.chimera.sync.errors import TargetFetchError, TargetUploadError

logger = structlog.get_logger(__name__)

_DATE_FORMAT = "%Y-%m-%dT%H:%M"


def _parse_hhmm(value: str) -> tuple[int, int]:
    hour, _, minute = value.partition(":")
    return int(hour), int(minute or 0)


class CresceVendasAdapter(TargetAdapter):
    """TargetAdapter for the CresceVendas discount-store API.

    Args:
        config: Resolved CresceVendas integration config.
        timeout: Per-request timeout in seconds (defaults to SYNC_HTTP_TIMEOUT).
        tz: Local timezone campaign windows are expressed in.
        transport: Optional httpx transport (tests inject MockTransport).
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        config: CresceVendasConfig,
        *,
        timeout: float | None = None,
        tz: ZoneInfo | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._config = config
        self._tz = tz or ZoneInfo(settings.SYNC_TIMEZONE)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._headers = {**config.auth_headers, "Content-Type": "application/json"}
        self._client = httpx.AsyncClient(
            headers=self._headers,
            timeout=timeout if timeout is not None else settings.SYNC_HTTP_TIMEOUT,
            transport=transport,
        )

    # ── Campaign Framing ───────────────────────────────────────────────────

    def campaign_window(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Start/end of today's campaign in local time.

        Starts at the configured start_time, or start_delay_minutes from now
        when that time has already passed.
        """
        campaign = self._config.campaign
        local_now = (now or self._clock()).astimezone(self._tz)

        start_hour, start_minute = _parse_hhmm(campaign.start_time)
        end_hour, end_minute = _parse_hhmm(campaign.end_time)
        start = local_now.replace(hour=start_hour, minute=start_minute, second=0, microsecond=0)
        end = local_now.replace(hour=end_hour, minute=end_minute, second=0, microsecond=0)

        if local_now >= start:
            start = (local_now + timedelta(minutes=campaign.start_delay_minutes)).replace(
                second=0, microsecond=0
            )
        return start, end

    def build_payload(
        self,
        store_key: str,
        records: list[ProductRecord],
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Frame a batch as a batch_upload request body."""
        campaign = self._config.campaign
        local_now = (now or self._clock()).astimezone(self._tz)
        start, end = self.campaign_window(local_now)

        name = (
            campaign.name_template.replace("{store}", store_key)
            .replace("{date}", local_now.strftime("%Y-%m-%d"))
            .replace("{time}", local_now.strftime("%H:%M"))
        )

        return {
            "override": 1 if campaign.override_existing else 0,
            "start_date": start.strftime(_DATE_FORMAT),
            "end_date": end.strftime(_DATE_FORMAT),
            "store_registrations": [store_key],
            "name": name,
            "discount_store_lines": [
                to_crescevendas_line(record, campaign.default_limit) for record in records
            ],
        }

    # ── Upload ─────────────────────────────────────────────────────────────

    async def send_batch(
        self,
        store_key: str,
        records: list[ProductRecord],
        batch_index: int = 0,
    ) -> BatchResult:
        url = join_url(self._config.base_url, self._config.send_products_endpoint)
        body = self.build_payload(store_key, records)

        try:
            response = await self._client.post(url, json=body)
            response.raise_for_status()
            data = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as exc:
            raise TargetUploadError(store_key, records, str(exc) or type(exc).__name__) from exc

        if isinstance(data, dict) and data.get("error"):
            raise TargetUploadError(store_key, records, str(data["error"]))

        campaign_id = data.get("id") if isinstance(data, dict) else None
        logger.info(
            "crescevendas.batch_sent",
            store_key=store_key,
            batch_index=batch_index,
            records=len(records),
            campaign_id=campaign_id,
        )
        return BatchResult(
            batch_index=batch_index,
            sent=len(records),
            campaign_id=str(campaign_id) if campaign_id is not None else None,
            response=data if isinstance(data, dict) else {"data": data},
        )

    # ── Listing ────────────────────────────────────────────────────────────

    def _listing_params(self, store_key: str | None = None) -> dict[str, str]:
        today = self._clock().astimezone(self._tz).strftime("%Y-%m-%d")
        params = {"start_date": f"{today}T00:01:00", "end_date": f"{today}T23:59:00"}
        if store_key is not None:
            params["store_registration"] = store_key
        return params

    def parse_listing(self, store_key: str, data: Any) -> list[ProductRecord]:
        """Flatten a listing payload into ProductRecords.

        Accepts `{"response": {"discounts": [...]}}`, `{"discounts": [...]}`
        or `{"discount_store_lines": [...]}`. Campaign entries carrying their
        own `discount_store_lines` lend their start/end dates to each line.
        """
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            inner = data.get("response")
            if isinstance(inner, dict) and "discounts" in inner:
                items = inner.get("discounts") or []
            elif "discounts" in data:
                items = data.get("discounts") or []
            else:
                items = data.get("discount_store_lines") or []
        else:
            items = []

        records: list[ProductRecord] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            lines = item.get("discount_store_lines")
            if isinstance(lines, list):
                for line in lines:
                    if not isinstance(line, dict):
                        continue
                    framed = {
                        "start_at": parse_datetime(item.get("start_date"), self._tz),
                        "expire_at": parse_datetime(item.get("end_date"), self._tz),
                        **{k: v for k, v in line.items() if v is not None},
                    }
                    record = from_crescevendas_line(framed, store_key, self._tz)
                    if record is not None:
                        records.append(record)
            else:
                record = from_crescevendas_line(item, store_key, self._tz)
                if record is not None:
                    records.append(record)
        return records

    async def fetch_existing(self, store_key: str) -> list[ProductRecord]:
        url = join_url(self._config.base_url, self._config.get_products_endpoint)

        try:
            response = await self._client.get(url, params=self._listing_params(store_key))
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TargetFetchError(store_key, str(exc) or type(exc).__name__) from exc

        if isinstance(data, dict) and data.get("error"):
            raise TargetFetchError(store_key, str(data["error"]))

        records = self.parse_listing(store_key, data)
        logger.debug("crescevendas.listing_fetched", store_key=store_key, records=len(records))
        return records

    # ── Diagnostics ────────────────────────────────────────────────────────

    async def test_connection(self) -> IntegrationTestResult:
        start = time.perf_counter()
        url = join_url(self._config.base_url, self._config.get_products_endpoint)
        errors = self._config.validation_errors()
        if errors:
            return IntegrationTestResult(
                success=False,
                message="CresceVendas configuration is incomplete",
                error="; ".join(errors),
            )

        params = {**self._listing_params(), "limit": "1"}
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else 0
            return IntegrationTestResult(
                success=False,
                message=f"CresceVendas connection failed: {exc}",
                error=str(exc) or type(exc).__name__,
                data={"endpoint": url, "status": status},
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        return IntegrationTestResult(
            success=True,
            message="CresceVendas connection established",
            data={"endpoint": url, "status": response.status_code},
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
