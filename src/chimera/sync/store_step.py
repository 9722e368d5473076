"""Per-store sync step: source fetch -> cache refresh -> comparison -> batched upload.

Every error raised below this point is caught and recorded on the store's
StoreSyncResult; nothing unwinds into the orchestrator.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from src.chimera.core.monitoring import sync_products_sent_total, sync_store_steps_total
from src.chimera.integrations.adapter import SourceAdapter, TargetAdapter
from src.chimera.integrations.schemas import ProductRecord, Store
from src.chimera.sync.comparator import Comparator
from src.chimera.sync.errors import (
    AuthExtractionError,
    PaginationOverrunError,
    SourceFetchError,
    TargetFetchError,
    TargetUploadError,
)
from src.chimera.sync.retry import RetryPolicy
from src.chimera.sync.schemas import (
    CleanupPolicy,
    ComparisonResult,
    StoreSyncResult,
    StoreSyncStatus,
    SyncOptions,
)

if TYPE_CHECKING:
    from src.chimera.sync.tracker import CancelToken

logger = structlog.get_logger(__name__)


class ProductCache(Protocol):
    """Local snapshot of the last source fetch per store."""

    async def refresh(
        self,
        store_key: str,
        records: list[ProductRecord],
        policy: CleanupPolicy,
        now: datetime,
    ) -> int:
        """Upsert `records` and apply `policy`; returns the number of rows removed."""
        ...


def partition(records: list[ProductRecord], batch_size: int) -> list[list[ProductRecord]]:
    """Split records into consecutive batches, preserving fetch order."""
    return [records[i : i + batch_size] for i in range(0, len(records), batch_size)]


class StoreSyncStep:
    """Runs one store through fetch, compare and upload.

    Args:
        source: Run-scoped source adapter.
        target: Run-scoped target adapter.
        comparator: Comparator (default thresholds from settings when omitted).
        product_cache: Optional local product snapshot store.
        clock: Returns the current aware datetime.
        sleep: Optional sleep coroutine for retry waits (tests pass a no-op).
    """

    def __init__(
        self,
        source: SourceAdapter,
        target: TargetAdapter,
        comparator: Comparator | None = None,
        product_cache: ProductCache | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._comparator = comparator or Comparator()
        self._cache = product_cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    async def run(
        self,
        store: Store,
        options: SyncOptions,
        cancel_token: CancelToken | None = None,
    ) -> StoreSyncResult:
        start = time.perf_counter()
        store_key = store.registration
        log = logger.bind(store_id=store.id, store_key=store_key)

        def finish(status: StoreSyncStatus, **fields: Any) -> StoreSyncResult:
            result = StoreSyncResult(
                store_id=store.id,
                store_name=store.name,
                registration=store_key,
                status=status,
                execution_time_ms=(time.perf_counter() - start) * 1000,
                **fields,
            )
            sync_store_steps_total.labels(status=status.value).inc()
            if result.sent:
                sync_products_sent_total.inc(result.sent)
            log.info(
                "store_step.finished",
                status=status.value,
                fetched=result.fetched,
                sent=result.sent,
                error=result.error,
            )
            return result

        if not store.active:
            return finish(StoreSyncStatus.SKIPPED)
        if cancel_token is not None and cancel_token.cancelled:
            return finish(StoreSyncStatus.CANCELLED, error="cancelled before start")

        policy = RetryPolicy.from_options(options, sleep=self._sleep)

        # 1. Source fetch (resumes from the failing cursor on retry)
        try:
            records = await self._fetch_source(store_key, policy)
        except (SourceFetchError, AuthExtractionError, PaginationOverrunError) as exc:
            log.error("store_step.source_failed", error=str(exc), attempts=policy.last_attempts)
            return finish(StoreSyncStatus.FAILED, attempts=policy.last_attempts, error=str(exc))
        attempts = policy.last_attempts
        now = self._clock()
        records = self._frame(records, now)

        # 2. Local snapshot + cleanup
        cleaned = await self._refresh_cache(store_key, records, options, now)

        # 3. Comparison (informational, never fatal)
        comparison = None
        if not options.skip_comparison:
            comparison = await self._compare(store_key, records, policy, now)

        # 4. Batched upload, each batch retried on its own
        batches = partition(records, options.batch_size)
        sent = 0
        batches_sent = 0
        first_error: str | None = None
        cancelled = False

        for index, batch in enumerate(batches):
            if cancel_token is not None and cancel_token.cancelled:
                cancelled = True
                log.info("store_step.cancelled", batch_index=index, batches_total=len(batches))
                break
            try:
                batch_result = await policy.call(
                    lambda batch=batch, index=index: self._target.send_batch(store_key, batch, index),
                    retry_on=(TargetUploadError,),
                    operation="send_batch",
                    store_key=store_key,
                    batch_index=index,
                )
            except TargetUploadError as exc:
                first_error = first_error or str(exc)
                log.error("store_step.batch_failed", batch_index=index, error=str(exc))
                continue
            sent += batch_result.sent
            batches_sent += 1

        if batches_sent == len(batches):
            status = StoreSyncStatus.SUCCESS
        elif batches_sent > 0:
            status = StoreSyncStatus.PARTIAL
        elif cancelled:
            status = StoreSyncStatus.CANCELLED
        else:
            status = StoreSyncStatus.FAILED

        if first_error is None and cancelled:
            first_error = "cancelled"

        return finish(
            status,
            fetched=len(records),
            sent=sent,
            batches_total=len(batches),
            batches_sent=batches_sent,
            attempts=attempts,
            comparison=comparison,
            cleaned=cleaned,
            error=first_error,
        )

    async def compare(self, store: Store, options: SyncOptions) -> ComparisonResult:
        """Fetch both sides for a store and diff them without uploading."""
        policy = RetryPolicy.from_options(options, sleep=self._sleep)
        records = await self._fetch_source(store.registration, policy)
        existing = await policy.call(
            lambda: self._target.fetch_existing(store.registration),
            retry_on=(TargetFetchError,),
            operation="fetch_target",
            store_key=store.registration,
        )
        now = self._clock()
        return self._comparator.diff(
            self._frame(records, now), existing, now=now, store_id=store.registration
        )

    # ── Helpers ────────────────────────────────────────────────────────────

    def _frame(self, records: list[ProductRecord], now: datetime) -> list[ProductRecord]:
        """Give source records the validity window the target frames an upload with."""
        window = self._target.campaign_window(now)
        if window is None:
            return records
        starts_at, expires_at = window
        return [r.model_copy(update={"starts_at": starts_at, "expires_at": expires_at}) for r in records]

    async def _fetch_source(self, store_key: str, policy: RetryPolicy) -> list[ProductRecord]:
        cursor = 0
        collected: list[ProductRecord] = []

        async def attempt() -> list[ProductRecord]:
            nonlocal cursor, collected
            try:
                return await self._source.fetch_all(store_key, cursor, collected)
            except SourceFetchError as exc:
                cursor = exc.cursor
                collected = exc.records
                raise

        return await policy.call(
            attempt,
            retry_on=(SourceFetchError,),
            operation="fetch_source",
            store_key=store_key,
        )

    async def _refresh_cache(
        self,
        store_key: str,
        records: list[ProductRecord],
        options: SyncOptions,
        now: datetime,
    ) -> int:
        if self._cache is None:
            return 0
        policy = options.cleanup_policy if options.cleanup_old_data else CleanupPolicy.NONE
        try:
            return await self._cache.refresh(store_key, records, policy, now)
        except Exception:
            logger.warning("store_step.cache_refresh_failed", store_key=store_key, exc_info=True)
            return 0

    async def _compare(
        self,
        store_key: str,
        records: list[ProductRecord],
        policy: RetryPolicy,
        now: datetime,
    ) -> ComparisonResult | None:
        try:
            existing = await policy.call(
                lambda: self._target.fetch_existing(store_key),
                retry_on=(TargetFetchError,),
                operation="fetch_target",
                store_key=store_key,
            )
        except TargetFetchError as exc:
            logger.warning("store_step.comparison_skipped", store_key=store_key, error=str(exc))
            return None
        return self._comparator.diff(records, existing, now=now, store_id=store_key)
