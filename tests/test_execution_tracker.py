"""Tests for ExecutionTracker -- lifecycle writes, conflicts, cancellation, recovery."""

from __future__ import annotations

import asyncio

import pytest

from src.chimera.sync.errors import ConflictError, ExecutionNotFoundError, ExecutionStateError
from src.chimera.sync.schemas import (
    ExecutionStatus,
    ExecutionTrigger,
    StoreSyncResult,
    StoreSyncStatus,
)
from src.chimera.sync.tracker import ExecutionTracker


def _result(status: StoreSyncStatus, sent: int = 0, error: str | None = None) -> StoreSyncResult:
    return StoreSyncResult(store_id=1, registration="001", status=status, sent=sent, fetched=sent, error=error)


class TestCreate:
    async def test_create_persists_pending_execution(self, tracker, execution_store):
        execution = await tracker.create(
            source_integration_id=1,
            target_integration_id=2,
            configuration_id=3,
            trigger=ExecutionTrigger.SCHEDULED,
        )

        stored = await execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.PENDING
        assert stored.trigger == ExecutionTrigger.SCHEDULED
        assert stored.configuration_id == 3

    async def test_same_configuration_conflicts_while_active(self, tracker):
        first = await tracker.create(source_integration_id=1, target_integration_id=2, configuration_id=3)

        with pytest.raises(ConflictError) as exc_info:
            await tracker.create(source_integration_id=1, target_integration_id=2, configuration_id=3)

        assert exc_info.value.execution_id == first.id

    async def test_ad_hoc_runs_conflict_on_source_target_pair(self, tracker):
        await tracker.create(source_integration_id=1, target_integration_id=2)

        with pytest.raises(ConflictError):
            await tracker.create(source_integration_id=1, target_integration_id=2)
        await tracker.create(source_integration_id=1, target_integration_id=5)

    async def test_force_bypasses_conflict(self, tracker):
        first = await tracker.create(source_integration_id=1, target_integration_id=2, configuration_id=3)

        second = await tracker.create(
            source_integration_id=1, target_integration_id=2, configuration_id=3, force=True
        )

        assert second.id != first.id

    async def test_finished_run_does_not_conflict(self, tracker):
        first = await tracker.create(source_integration_id=1, target_integration_id=2, configuration_id=3)
        await tracker.fail(first, "boom")

        await tracker.create(source_integration_id=1, target_integration_id=2, configuration_id=3)

    async def test_concurrent_creates_admit_exactly_one(self, tracker):
        outcomes = await asyncio.gather(
            *(
                tracker.create(source_integration_id=1, target_integration_id=2, configuration_id=3)
                for _ in range(5)
            ),
            return_exceptions=True,
        )

        assert sum(1 for o in outcomes if isinstance(o, ConflictError)) == 4


class TestLifecycle:
    async def test_running_then_finalized(self, tracker, execution_store):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)
        await tracker.mark_running(execution)
        assert (await execution_store.get(execution.id)).status == ExecutionStatus.RUNNING

        results = [_result(StoreSyncStatus.SUCCESS, sent=4), _result(StoreSyncStatus.FAILED, error="x")]
        finished = await tracker.finalize(execution, results, ExecutionStatus.PARTIAL)

        stored = await execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.PARTIAL
        assert stored.summary.products_sent == 4
        assert stored.summary.errors == 1
        assert stored.summary.failed_stores == 1
        assert finished.finished_at is not None

    async def test_mark_running_requires_pending(self, tracker):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)
        await tracker.mark_running(execution)

        with pytest.raises(ExecutionStateError):
            await tracker.mark_running(execution)

    async def test_terminal_execution_is_immutable(self, tracker, execution_store):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)
        await tracker.finalize(execution, [], ExecutionStatus.SUCCESS)

        with pytest.raises(ExecutionStateError):
            await tracker.finalize(execution, [_result(StoreSyncStatus.FAILED)], ExecutionStatus.FAILED)
        with pytest.raises(ExecutionStateError):
            await tracker.mark_running(execution)

        assert (await execution_store.get(execution.id)).status == ExecutionStatus.SUCCESS

    async def test_finalize_rejects_non_terminal_status(self, tracker):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)

        with pytest.raises(ExecutionStateError):
            await tracker.finalize(execution, [], ExecutionStatus.RUNNING)

    async def test_fail_records_error(self, tracker):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)

        failed = await tracker.fail(execution, "Source integration 1 not found")

        assert failed.status == ExecutionStatus.FAILED
        assert failed.error == "Source integration 1 not found"
        assert failed.results == []


class TestCancel:
    async def test_cancel_live_run_trips_its_token(self, tracker):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)
        token = tracker.cancel_token(execution.id)
        await tracker.mark_running(execution)

        returned = await tracker.request_cancel(execution.id)

        assert token.cancelled
        assert token.reason == "cancellation requested"
        assert returned.status == ExecutionStatus.RUNNING

    async def test_cancel_without_live_worker_finalizes(self, execution_store):
        first = ExecutionTracker(execution_store)
        execution = await first.create(source_integration_id=1, target_integration_id=2)

        # A different process (fresh tracker) has no token for it
        other = ExecutionTracker(execution_store)
        cancelled = await other.request_cancel(execution.id)

        assert cancelled.status == ExecutionStatus.CANCELLED
        assert (await execution_store.get(execution.id)).status == ExecutionStatus.CANCELLED

    async def test_cancel_terminal_execution_is_rejected(self, tracker):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)
        await tracker.fail(execution, "boom")

        with pytest.raises(ExecutionStateError):
            await tracker.request_cancel(execution.id)

    async def test_cancel_unknown_execution(self, tracker):
        with pytest.raises(ExecutionNotFoundError):
            await tracker.request_cancel("missing")


class TestQueries:
    async def test_list_running_and_recent(self, tracker):
        done = await tracker.create(source_integration_id=1, target_integration_id=2)
        await tracker.fail(done, "boom")
        live = await tracker.create(source_integration_id=3, target_integration_id=4)

        running = await tracker.list_running()
        recent = await tracker.list_executions(limit=10)

        assert [e.id for e in running] == [live.id]
        assert {e.id for e in recent} == {done.id, live.id}
        assert recent[0].started_at >= recent[1].started_at
        assert len(await tracker.list_executions(limit=1)) == 1

    async def test_get_unknown_raises(self, tracker):
        with pytest.raises(ExecutionNotFoundError):
            await tracker.get("nope")


class TestReconcile:
    async def test_interrupted_runs_are_failed_on_startup(self, execution_store):
        crashed = ExecutionTracker(execution_store)
        running = await crashed.create(source_integration_id=1, target_integration_id=2)
        await crashed.mark_running(running)
        pending = await crashed.create(source_integration_id=3, target_integration_id=4)

        restarted = ExecutionTracker(execution_store)
        count = await restarted.reconcile_interrupted()

        assert count == 2
        for execution_id in (running.id, pending.id):
            stored = await execution_store.get(execution_id)
            assert stored.status == ExecutionStatus.FAILED
            assert stored.error.startswith("interrupted")

    async def test_live_runs_of_this_process_are_left_alone(self, tracker, execution_store):
        execution = await tracker.create(source_integration_id=1, target_integration_id=2)

        assert await tracker.reconcile_interrupted() == 0
        assert (await execution_store.get(execution.id)).status == ExecutionStatus.PENDING
