"""In-memory test doubles for every port the sync engine talks to.

No database, network or SMTP server is required:
- FakeSource / FakeTarget: scriptable adapters (page size, failures, delays)
- InMemoryExecutionStore: ExecutionStore that stores deep copies
- InMemoryConfigurationRepository: integrations, stores, channels, configurations
- InMemoryProductCache: ProductCache keyed by (store, code)
- RecordingSender: NotificationSender that keeps every message
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from src.chimera.integrations.adapter import SourceAdapter, TargetAdapter
from src.chimera.integrations.schemas import (
    BatchResult,
    Integration,
    IntegrationTestResult,
    ProductRecord,
    SourcePage,
    Store,
)
from src.chimera.notifications.channels import NotificationSender
from src.chimera.notifications.schemas import NotificationChannel, SendResult
from src.chimera.sync.errors import SourceFetchError, TargetFetchError, TargetUploadError
from src.chimera.sync.schemas import (
    CleanupPolicy,
    Execution,
    ExecutionStatus,
    SyncConfiguration,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def make_record(
    code: str,
    price: float = 10.0,
    final_price: float = 8.0,
    store_key: str = "001",
    **kwargs: Any,
) -> ProductRecord:
    return ProductRecord(code=code, price=price, final_price=final_price, store_id=store_key, **kwargs)


async def noop_sleep(_seconds: float) -> None:
    return None


# ── Adapters ──────────────────────────────────────────────────────────────────


class FakeSource(SourceAdapter):
    """Offset-paged source over an in-memory record list per store.

    fail_at[store] lists cursors whose next request fails once;
    always_fail makes every request for a store fail.
    """

    def __init__(self, records: dict[str, list[ProductRecord]] | None = None, page_size: int = 2) -> None:
        self.records = dict(records or {})
        self.page_size = page_size
        self.fail_at: dict[str, list[int]] = {}
        self.always_fail: set[str] = set()
        self.delay = 0.0
        self.page_calls: list[tuple[str, int]] = []
        self.fetch_all_calls: list[tuple[str, int, int]] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def authenticate(self) -> str:
        return "token"

    async def fetch_page(self, store_key: str, cursor: int) -> SourcePage:
        self.page_calls.append((store_key, cursor))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            pending = self.fail_at.get(store_key, [])
            if store_key in self.always_fail or cursor in pending:
                if cursor in pending:
                    pending.remove(cursor)
                raise SourceFetchError(store_key, cursor, "upstream 503")
        finally:
            self.active -= 1

        chunk = self.records.get(store_key, [])[cursor : cursor + self.page_size]
        return SourcePage(
            records=chunk,
            next_cursor=cursor + len(chunk),
            has_more=bool(chunk),
            raw_count=len(chunk),
        )

    async def fetch_all(
        self,
        store_key: str,
        cursor: int = 0,
        collected: list[ProductRecord] | None = None,
    ) -> list[ProductRecord]:
        self.fetch_all_calls.append((store_key, cursor, len(collected or [])))
        records = list(collected or [])
        while True:
            try:
                page = await self.fetch_page(store_key, cursor)
            except SourceFetchError as exc:
                exc.records = list(records)
                raise
            if not page.has_more:
                return records
            records.extend(page.records)
            cursor = page.next_cursor

    async def test_connection(self) -> IntegrationTestResult:
        return IntegrationTestResult(success=True, message="fake source")

    async def aclose(self) -> None:
        self.closed = True


class FakeTarget(TargetAdapter):
    """Target that applies accepted batches to an in-memory listing.

    fail_batches[(store, batch_index)] is the number of times that batch is
    rejected before it is accepted.
    """

    def __init__(self) -> None:
        self.existing: dict[str, dict[str, ProductRecord]] = {}
        self.fail_batches: dict[tuple[str, int], int] = {}
        self.always_fail: set[str] = set()
        self.fetch_fails: set[str] = set()
        self.attempts: list[tuple[str, int, list[str]]] = []
        self.sent: list[tuple[str, int, list[str]]] = []
        self.on_send: Callable[[str, int], None] | None = None
        self.closed = False

    async def fetch_existing(self, store_key: str) -> list[ProductRecord]:
        if store_key in self.fetch_fails:
            raise TargetFetchError(store_key, "listing unavailable")
        return list(self.existing.get(store_key, {}).values())

    async def send_batch(
        self,
        store_key: str,
        records: list[ProductRecord],
        batch_index: int = 0,
    ) -> BatchResult:
        codes = [r.code for r in records]
        self.attempts.append((store_key, batch_index, codes))
        if self.on_send is not None:
            self.on_send(store_key, batch_index)

        remaining = self.fail_batches.get((store_key, batch_index), 0)
        if store_key in self.always_fail or remaining > 0:
            if remaining:
                self.fail_batches[(store_key, batch_index)] = remaining - 1
            raise TargetUploadError(store_key, records, "HTTP 500")

        listing = self.existing.setdefault(store_key, {})
        for record in records:
            listing[record.code] = record
        self.sent.append((store_key, batch_index, codes))
        return BatchResult(batch_index=batch_index, sent=len(records))

    async def test_connection(self) -> IntegrationTestResult:
        return IntegrationTestResult(success=True, message="fake target")

    async def aclose(self) -> None:
        self.closed = True


# ── Repositories ─────────────────────────────────────────────────────────────


class InMemoryExecutionStore:
    """ExecutionStore double; copies on the way in and out like a real database."""

    def __init__(self) -> None:
        self.rows: dict[str, Execution] = {}
        self.saves = 0

    async def save(self, execution: Execution) -> None:
        self.saves += 1
        self.rows[execution.id] = execution.model_copy(deep=True)

    async def get(self, execution_id: str) -> Execution | None:
        row = self.rows.get(execution_id)
        return row.model_copy(deep=True) if row else None

    async def list_recent(self, limit: int) -> list[Execution]:
        rows = sorted(self.rows.values(), key=lambda e: e.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in rows[:limit]]

    async def list_by_status(self, statuses: tuple[ExecutionStatus, ...]) -> list[Execution]:
        rows = [r for r in self.rows.values() if r.status in statuses]
        return [r.model_copy(deep=True) for r in sorted(rows, key=lambda e: e.started_at)]


class InMemoryConfigurationRepository:
    def __init__(self) -> None:
        self.integrations: dict[int, Integration] = {}
        self.configurations: dict[int, SyncConfiguration] = {}
        self.channels: dict[int, NotificationChannel] = {}
        self.stores: dict[int, Store] = {}

    async def get_integration(self, integration_id: int) -> Integration | None:
        return self.integrations.get(integration_id)

    async def get_configuration(self, configuration_id: int) -> SyncConfiguration | None:
        return self.configurations.get(configuration_id)

    async def get_notification_channel(self, channel_id: int) -> NotificationChannel | None:
        return self.channels.get(channel_id)

    async def list_active_stores(self, store_ids: list[int] | None = None) -> list[Store]:
        stores = [s for s in self.stores.values() if s.active]
        if store_ids:
            stores = [s for s in stores if s.id in store_ids]
        return sorted(stores, key=lambda s: s.id)

    async def list_scheduled_configurations(self) -> list[SyncConfiguration]:
        return [
            c
            for c in self.configurations.values()
            if c.active and (c.schedule.cron or c.schedule.sync_time or c.schedule.compare_time)
        ]


class InMemoryProductCache:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], ProductRecord] = {}
        self.calls: list[tuple[str, CleanupPolicy]] = []

    async def refresh(
        self,
        store_key: str,
        records: list[ProductRecord],
        policy: CleanupPolicy,
        now: datetime,
    ) -> int:
        self.calls.append((store_key, policy))
        for record in records:
            self.rows[(store_key, record.code)] = record

        if policy == CleanupPolicy.EXPIRED_ONLY:
            stale = [
                key
                for key, r in self.rows.items()
                if key[0] == store_key and r.expires_at is not None and r.expires_at < now
            ]
        elif policy == CleanupPolicy.ABSENT_FROM_SOURCE:
            codes = {r.code for r in records}
            stale = [key for key in self.rows if key[0] == store_key and key[1] not in codes]
        else:
            stale = []
        for key in stale:
            del self.rows[key]
        return len(stale)


# ── Notifications ────────────────────────────────────────────────────────────


class RecordingSender(NotificationSender):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[tuple[int, str]] = []

    async def send(self, channel: NotificationChannel, message: str) -> SendResult:
        if self.fail:
            raise RuntimeError("smtp down")
        self.messages.append((channel.id, message))
        return SendResult(success=True, detail="recorded")
