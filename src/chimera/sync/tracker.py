"""Execution tracker -- the single writer of execution lifecycle state.

Every transition (PENDING -> RUNNING -> terminal) is persisted through an
ExecutionStore before the run moves on, so a crash mid-run leaves a durable
RUNNING row that reconcile_interrupted() finalizes on the next start.
Terminal executions are immutable.

Also owns the in-process cancel tokens of live runs.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Protocol

import structlog

from src.chimera.core.monitoring import (
    sync_run_duration_seconds,
    sync_running_executions,
    sync_runs_total,
)
from src.chimera.sync.errors import (
    ConflictError,
    ExecutionNotFoundError,
    ExecutionStateError,
)
from src.chimera.sync.schemas import (
    Execution,
    ExecutionStatus,
    ExecutionSummary,
    ExecutionTrigger,
    StoreSyncResult,
)

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)


class CancelToken:
    """Cooperative cancellation flag, checked at store and batch boundaries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()


class ExecutionStore(Protocol):
    """Persistence boundary for executions (SQLAlchemy in prod, in-memory in tests)."""

    async def save(self, execution: Execution) -> None: ...

    async def get(self, execution_id: str) -> Execution | None: ...

    async def list_recent(self, limit: int) -> list[Execution]: ...

    async def list_by_status(self, statuses: tuple[ExecutionStatus, ...]) -> list[Execution]: ...


class ExecutionTracker:
    """Creates, transitions and queries executions.

    Args:
        repository: ExecutionStore implementation.
    """

    def __init__(self, repository: ExecutionStore) -> None:
        self._repository = repository
        self._tokens: dict[str, CancelToken] = {}
        self._running: set[str] = set()
        self._create_lock = asyncio.Lock()

    # ── Lifecycle ──────────────────────────────────────────────────────────

    async def create(
        self,
        *,
        source_integration_id: int,
        target_integration_id: int,
        configuration_id: int | None = None,
        notification_channel_id: int | None = None,
        trigger: ExecutionTrigger = ExecutionTrigger.MANUAL,
        force: bool = False,
    ) -> Execution:
        """Persist a new PENDING execution.

        Raises:
            ConflictError: Another execution with the same configuration (or
                source/target pair for ad-hoc runs) is PENDING or RUNNING,
                and `force` is not set.
        """
        execution = Execution(
            configuration_id=configuration_id,
            source_integration_id=source_integration_id,
            target_integration_id=target_integration_id,
            notification_channel_id=notification_channel_id,
            trigger=trigger,
        )

        # Check-then-insert must not interleave between two triggers
        async with self._create_lock:
            if not force:
                for active in await self.list_running():
                    if active.conflict_key == execution.conflict_key:
                        logger.warning(
                            "tracker.conflict",
                            execution_id=active.id,
                            conflict_key=execution.conflict_key,
                        )
                        raise ConflictError(active.id)
            await self._repository.save(execution)

        self._tokens[execution.id] = CancelToken()
        logger.info(
            "tracker.created",
            execution_id=execution.id,
            configuration_id=configuration_id,
            trigger=trigger.value,
            forced=force,
        )
        return execution

    async def mark_running(self, execution: Execution) -> Execution:
        if execution.status != ExecutionStatus.PENDING:
            raise ExecutionStateError(execution.id, execution.status.value, ExecutionStatus.RUNNING.value)
        execution.status = ExecutionStatus.RUNNING
        await self._repository.save(execution)
        self._running.add(execution.id)
        sync_running_executions.inc()
        logger.info("tracker.running", execution_id=execution.id)
        return execution

    async def finalize(
        self,
        execution: Execution,
        results: list[StoreSyncResult],
        status: ExecutionStatus,
        error: str | None = None,
    ) -> Execution:
        """Write the terminal state, results and summary in one save."""
        if execution.is_terminal:
            raise ExecutionStateError(execution.id, execution.status.value, status.value)
        if status in ACTIVE_STATUSES:
            raise ExecutionStateError(execution.id, execution.status.value, status.value)

        finished_at = datetime.now(timezone.utc)
        elapsed = (finished_at - execution.started_at).total_seconds()

        execution.results = list(results)
        execution.summary = ExecutionSummary.from_results(results, execution_time_ms=elapsed * 1000)
        execution.finished_at = finished_at
        execution.status = status
        execution.error = error
        await self._repository.save(execution)

        self._tokens.pop(execution.id, None)
        if execution.id in self._running:
            self._running.discard(execution.id)
            sync_running_executions.dec()
        sync_runs_total.labels(status=status.value, trigger=execution.trigger.value).inc()
        sync_run_duration_seconds.observe(elapsed)

        logger.info(
            "tracker.finalized",
            execution_id=execution.id,
            status=status.value,
            total_stores=execution.summary.total_stores,
            products_sent=execution.summary.products_sent,
            errors=execution.summary.errors,
            error=error,
        )
        return execution

    async def fail(self, execution: Execution, error: str) -> Execution:
        """Finalize as FAILED without any store results (configuration errors)."""
        return await self.finalize(execution, [], ExecutionStatus.FAILED, error=error)

    # ── Cancellation ───────────────────────────────────────────────────────

    def cancel_token(self, execution_id: str) -> CancelToken:
        token = self._tokens.get(execution_id)
        if token is None:
            token = self._tokens[execution_id] = CancelToken()
        return token

    async def request_cancel(self, execution_id: str) -> Execution:
        """Ask a live run to stop at its next store/batch boundary.

        A PENDING or RUNNING execution with no live worker in this process
        is finalized as CANCELLED directly.
        """
        execution = await self.get(execution_id)
        if execution.is_terminal:
            raise ExecutionStateError(execution.id, execution.status.value, ExecutionStatus.CANCELLED.value)

        token = self._tokens.get(execution_id)
        if token is not None:
            token.cancel("cancellation requested")
            logger.info("tracker.cancel_requested", execution_id=execution_id)
            return execution

        return await self.finalize(
            execution, execution.results, ExecutionStatus.CANCELLED, error="cancelled without a live worker"
        )

    # ── Queries ────────────────────────────────────────────────────────────

    async def get(self, execution_id: str) -> Execution:
        execution = await self._repository.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def list_running(self) -> list[Execution]:
        return await self._repository.list_by_status(ACTIVE_STATUSES)

    async def list_executions(self, limit: int = 50) -> list[Execution]:
        return await self._repository.list_recent(limit)

    # ── Recovery ───────────────────────────────────────────────────────────

    async def reconcile_interrupted(self) -> int:
        """Fail executions left PENDING/RUNNING by a process that died mid-run."""
        reconciled = 0
        for execution in await self.list_running():
            if execution.id in self._tokens:
                continue
            await self.fail(execution, "interrupted: process stopped before the run finished")
            reconciled += 1

        if reconciled:
            logger.warning("tracker.reconciled_interrupted", count=reconciled)
        return reconciled
