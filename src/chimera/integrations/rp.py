"""RP back-office adapter -- the product source.

Pages through the discounted products of a store via the RP products
endpoint. Authentication is lazy: STATIC_TOKEN uses the configured token,
LOGIN posts credentials once and extracts the token from a dotted path in
the response. A 401 on a page request triggers one shared re-login
(single-flight) no matter how many store workers observed it.

One adapter instance (and one httpx.AsyncClient) lives for one run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

import httpx
import structlog

from src.chimera.config import get_settings
from src.chimera.integrations.adapter import SourceAdapter
from src.chimera.integrations.field_mapping import daily_window, from_rp_product
from src.chimera.integrations.schemas import (
    AuthMethod,
    IntegrationTestResult,
    PaginationMethod,
    ProductRecord,
    RPConfig,
    SourcePage,
)
from src.chimera.sync.errors import (
    AuthExtractionError,
    PaginationOverrunError,
    SourceFetchError,
)

logger = structlog.get_logger(__name__)


def extract_path(obj: Any, dotted_path: str) -> Any:
    """Walk a dotted path ("response.token") through nested dicts.

    Returns None when any segment is missing.
    """
    current = obj
    for segment in dotted_path.split("."):
        if not isinstance(current, dict) or current.get(segment) is None:
            return None
        current = current[segment]
    return current


def join_url(base_url: str, path: str) -> str:
    if not path:
        return base_url
    if path.startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


class RPAdapter(SourceAdapter):
    """SourceAdapter for the RP ERP products API.

    Args:
        config: Resolved RP integration config.
        safety_cap: Max records per store before PaginationOverrunError
            (defaults to SYNC_PAGINATION_SAFETY_CAP).
        timeout: Per-request timeout in seconds (defaults to SYNC_HTTP_TIMEOUT).
        tz: Local timezone for the daily validity window.
        transport: Optional httpx transport (tests inject MockTransport).
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        config: RPConfig,
        *,
        safety_cap: int | None = None,
        timeout: float | None = None,
        tz: ZoneInfo | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._config = config
        self._safety_cap = safety_cap if safety_cap is not None else settings.SYNC_PAGINATION_SAFETY_CAP
        self._tz = tz or ZoneInfo(settings.SYNC_TIMEZONE)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.SYNC_HTTP_TIMEOUT,
            transport=transport,
        )

        # Token state shared by every store worker of the run
        self._token: str | None = None
        self._token_generation = 0
        self._auth_lock = asyncio.Lock()
        self.login_count = 0

    # ── Authentication ─────────────────────────────────────────────────────

    async def authenticate(self) -> str:
        if self._token is not None:
            return self._token
        return await self._refresh_token(self._token_generation)

    async def _refresh_token(self, seen_generation: int) -> str:
        """Obtain a new token unless another worker already did since `seen_generation`."""
        async with self._auth_lock:
            if self._token is not None and self._token_generation != seen_generation:
                return self._token

            if self._config.auth_method == AuthMethod.STATIC_TOKEN:
                token = self._config.static_token or ""
            else:
                token = await self._login()

            self._token = token
            self._token_generation += 1
            return token

    async def _login(self) -> str:
        url = join_url(self._config.base_url, self._config.login_endpoint or "")
        self.login_count += 1
        response = await self._client.post(
            url,
            json={"usuario": self._config.username, "senha": self._config.password},
        )
        response.raise_for_status()

        token = extract_path(response.json(), self._config.token_response_field)
        if not token:
            raise AuthExtractionError(self._config.token_response_field)

        logger.info("rp.authenticated", login_count=self.login_count)
        return str(token)

    # ── Pagination ─────────────────────────────────────────────────────────

    def _page_request(self, store_key: str, cursor: int) -> tuple[str, dict[str, str]]:
        """Build URL and query params for the page starting at `cursor`."""
        endpoint = self._config.products_endpoint
        pagination = self._config.pagination

        params = dict(pagination.additional_params)
        if "{lastId}" not in endpoint:
            params[pagination.param_name] = str(cursor)

        path = endpoint.replace("{lastId}", str(cursor)).replace("{storeReg}", store_key)
        return join_url(self._config.base_url, path), params

    async def _get(self, url: str, params: dict[str, str], token: str) -> httpx.Response:
        headers = {self._config.token_header: token} if token else {}
        return await self._client.get(url, params=params, headers=headers)

    async def fetch_page(self, store_key: str, cursor: int) -> SourcePage:
        url, params = self._page_request(store_key, cursor)

        try:
            if self._token is None:
                await self.authenticate()
            generation = self._token_generation
            response = await self._get(url, params, self._token or "")

            if response.status_code == 401 and self._config.auth_method == AuthMethod.LOGIN:
                logger.info("rp.token_rejected", store_key=store_key, cursor=cursor)
                token = await self._refresh_token(generation)
                response = await self._get(url, params, token)

            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceFetchError(store_key, cursor, str(exc) or type(exc).__name__) from exc

        if isinstance(payload, dict):
            raw_items = payload.get("response") or []
        else:
            raw_items = payload
        if not isinstance(raw_items, list):
            raise SourceFetchError(store_key, cursor, "malformed products payload")

        window = daily_window(self._clock(), self._tz)
        records = [
            record
            for record in (from_rp_product(item, store_key, window) for item in raw_items if isinstance(item, dict))
            if record is not None
        ]

        if self._config.pagination.method == PaginationMethod.OFFSET:
            next_cursor = cursor + len(raw_items)
        else:
            last = raw_items[-1] if raw_items else {}
            last_id = last.get("id") if isinstance(last, dict) else None
            try:
                next_cursor = int(last_id) if last_id else cursor + 1
            except (TypeError, ValueError) as exc:
                raise SourceFetchError(store_key, cursor, "malformed products payload") from exc

        return SourcePage(
            records=records,
            next_cursor=next_cursor,
            has_more=bool(raw_items),
            raw_count=len(raw_items),
        )

    async def fetch_all(
        self,
        store_key: str,
        cursor: int = 0,
        collected: list[ProductRecord] | None = None,
    ) -> list[ProductRecord]:
        records = list(collected or [])
        seen = len(records)

        while True:
            try:
                page = await self.fetch_page(store_key, cursor)
            except SourceFetchError as exc:
                exc.records = list(records)
                raise

            if not page.has_more:
                break

            records.extend(page.records)
            seen += page.raw_count
            if seen > self._safety_cap:
                raise PaginationOverrunError(store_key, self._safety_cap, seen)
            cursor = page.next_cursor

        logger.debug("rp.fetch_complete", store_key=store_key, records=len(records))
        return records

    # ── Diagnostics ────────────────────────────────────────────────────────

    async def test_connection(self) -> IntegrationTestResult:
        start = time.perf_counter()
        errors = self._config.validation_errors()
        if errors:
            return IntegrationTestResult(
                success=False,
                message="RP configuration is incomplete",
                error="; ".join(errors),
            )

        try:
            token = await self.authenticate()
        except (httpx.HTTPError, ValueError, AuthExtractionError) as exc:
            return IntegrationTestResult(
                success=False,
                message="RP connection failed",
                error=str(exc) or type(exc).__name__,
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        return IntegrationTestResult(
            success=True,
            message="RP connection established",
            data={"token_length": len(token), "auth_method": self._config.auth_method.value},
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
