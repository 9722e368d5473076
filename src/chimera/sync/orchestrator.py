"""Sync orchestrator -- fans a run out across stores and drives the execution state machine.

PENDING -> RUNNING -> {SUCCESS, FAILED, PARTIAL, CANCELLED}

Workers return StoreSyncResults instead of mutating shared state; the
summary is computed once, after every worker has finished. A run timeout
trips the same cooperative cancel token an operator cancel uses, so stores
that have not started yet come back CANCELLED and in-flight HTTP calls are
allowed to complete.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from src.chimera.config import get_settings
from src.chimera.integrations.schemas import Store
from src.chimera.sync.schemas import (
    Execution,
    ExecutionStatus,
    StoreSyncResult,
    StoreSyncStatus,
    SyncOptions,
)
from src.chimera.sync.store_step import StoreSyncStep
from src.chimera.sync.tracker import CancelToken, ExecutionTracker

logger = structlog.get_logger(__name__)

TIMEOUT_REASON = "timeout"


def terminal_status(results: list[StoreSyncResult], cancelled: bool = False) -> ExecutionStatus:
    """Derive the run's terminal status from its store results.

    CANCELLED when an operator cancelled the run; SUCCESS when every store
    succeeded or was skipped; PARTIAL when at least one store sent data and
    at least one did not succeed; FAILED otherwise.
    """
    if cancelled:
        return ExecutionStatus.CANCELLED
    if all(r.status in (StoreSyncStatus.SUCCESS, StoreSyncStatus.SKIPPED) for r in results):
        return ExecutionStatus.SUCCESS
    if any(r.status in (StoreSyncStatus.SUCCESS, StoreSyncStatus.PARTIAL) for r in results):
        return ExecutionStatus.PARTIAL
    return ExecutionStatus.FAILED


class SyncOrchestrator:
    """Runs one execution end to end across its stores.

    Args:
        tracker: ExecutionTracker that persists every transition.
        max_workers: Hard cap on concurrent store workers (SYNC_MAX_WORKERS).
        max_execution_time: Run timeout in seconds (SYNC_MAX_EXECUTION_TIME).
    """

    def __init__(
        self,
        tracker: ExecutionTracker,
        max_workers: int | None = None,
        max_execution_time: float | None = None,
    ) -> None:
        settings = get_settings()
        self._tracker = tracker
        self._max_workers = max_workers or settings.SYNC_MAX_WORKERS
        self._max_execution_time = (
            max_execution_time if max_execution_time is not None else settings.SYNC_MAX_EXECUTION_TIME
        )

    async def run(
        self,
        execution: Execution,
        stores: list[Store],
        step: StoreSyncStep,
        options: SyncOptions,
        cancel_token: CancelToken | None = None,
    ) -> Execution:
        """Process every store and finalize the execution. Never raises on store failures."""
        token = cancel_token or self._tracker.cancel_token(execution.id)
        log = logger.bind(execution_id=execution.id)

        await self._tracker.mark_running(execution)
        log.info(
            "orchestrator.started",
            stores=len(stores),
            parallel=options.parallel_processing,
            batch_size=options.batch_size,
        )

        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._max_execution_time, token.cancel, TIMEOUT_REASON)
        start = time.perf_counter()

        try:
            if options.parallel_processing and len(stores) > 1:
                results = await self._run_parallel(stores, step, options, token)
            else:
                results = [await self._run_store(store, step, options, token) for store in stores]
        finally:
            timer.cancel()

        timed_out = token.cancelled and token.reason == TIMEOUT_REASON
        cancelled = token.cancelled and not timed_out
        status = terminal_status(results, cancelled=cancelled)

        error = None
        if timed_out:
            error = f"run exceeded max execution time of {self._max_execution_time:g}s"
        elif cancelled:
            error = token.reason

        log.info(
            "orchestrator.finished",
            status=status.value,
            elapsed_s=round(time.perf_counter() - start, 3),
            timed_out=timed_out,
        )
        return await self._tracker.finalize(execution, results, status, error=error)

    async def _run_parallel(
        self,
        stores: list[Store],
        step: StoreSyncStep,
        options: SyncOptions,
        token: CancelToken,
    ) -> list[StoreSyncResult]:
        semaphore = asyncio.Semaphore(min(len(stores), self._max_workers))

        async def bounded(store: Store) -> StoreSyncResult:
            async with semaphore:
                return await self._run_store(store, step, options, token)

        return list(await asyncio.gather(*(bounded(store) for store in stores)))

    async def _run_store(
        self,
        store: Store,
        step: StoreSyncStep,
        options: SyncOptions,
        token: CancelToken,
    ) -> StoreSyncResult:
        try:
            return await step.run(store, options, token)
        except Exception as exc:
            logger.error(
                "orchestrator.store_error",
                store_id=store.id,
                store_key=store.registration,
                error=str(exc),
                exc_info=True,
            )
            return StoreSyncResult(
                store_id=store.id,
                store_name=store.name,
                registration=store.registration,
                status=StoreSyncStatus.FAILED,
                error=str(exc) or type(exc).__name__,
            )
