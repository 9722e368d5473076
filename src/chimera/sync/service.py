"""Sync service -- the trigger surface of the engine.

Resolves a manual request or a stored configuration into a run plan,
creates the execution (PENDING, conflict-checked), builds the run-scoped
adapters, hands the stores to the orchestrator and sends start/finish
notifications. Configuration problems, or any other failure while loading
the run's integrations, stores or channel, finalize the execution as FAILED
instead of raising.

Entry points:
- execute_sync(): run and wait for the terminal execution
- start_sync(): create the execution and run it in the background
- run_configuration(): scheduled run of a stored configuration
- execute_comparison(): compare-only run, no uploads
- test_integration(): connectivity probe for one integration
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.chimera.integrations import build_adapter, build_source_adapter, build_target_adapter
from src.chimera.integrations.adapter import SourceAdapter, TargetAdapter
from src.chimera.integrations.schemas import Integration, IntegrationTestResult, Store
from src.chimera.notifications.dispatcher import NotificationDispatcher
from src.chimera.notifications.schemas import NotificationChannel, NotificationEvent
from src.chimera.sync.comparator import Comparator
from src.chimera.sync.errors import ConfigurationError, SyncError
from src.chimera.sync.orchestrator import SyncOrchestrator
from src.chimera.sync.repository import ConfigurationRepository
from src.chimera.sync.schemas import (
    ComparisonResult,
    Execution,
    ExecutionTrigger,
    SyncExecutionRequest,
    SyncOptions,
)
from src.chimera.sync.store_step import ProductCache, StoreSyncStep
from src.chimera.sync.tracker import ExecutionTracker

logger = structlog.get_logger(__name__)

SourceFactory = Callable[[Integration], SourceAdapter]
TargetFactory = Callable[[Integration], TargetAdapter]


@dataclass
class RunPlan:
    """Everything a run needs, resolved once from a request or configuration."""

    source_integration_id: int
    target_integration_id: int
    options: SyncOptions
    configuration_id: int | None = None
    name: str | None = None
    notification_channel_id: int | None = None
    store_ids: list[int] = field(default_factory=list)


class SyncService:
    """Coordinates configuration reads, the tracker, the orchestrator and notifications.

    Args:
        configurations: Read access to integrations, stores, channels, configurations.
        tracker: ExecutionTracker (conflict detection and lifecycle writes).
        dispatcher: NotificationDispatcher for start/finish/comparison messages.
        orchestrator: SyncOrchestrator (built from settings when omitted).
        product_cache: Optional ProductCache refreshed on every store step.
        comparator: Comparator shared by every store step.
        source_factory / target_factory: Integration -> adapter builders.
        sleep: Retry sleep override (tests pass a no-op coroutine).
    """

    def __init__(
        self,
        configurations: ConfigurationRepository,
        tracker: ExecutionTracker,
        dispatcher: NotificationDispatcher,
        orchestrator: SyncOrchestrator | None = None,
        product_cache: ProductCache | None = None,
        comparator: Comparator | None = None,
        source_factory: SourceFactory = build_source_adapter,
        target_factory: TargetFactory = build_target_adapter,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._configurations = configurations
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._orchestrator = orchestrator or SyncOrchestrator(tracker)
        self._product_cache = product_cache
        self._comparator = comparator or Comparator()
        self._source_factory = source_factory
        self._target_factory = target_factory
        self._sleep = sleep
        self._background: dict[asyncio.Task, str] = {}

    @property
    def tracker(self) -> ExecutionTracker:
        return self._tracker

    # ── Triggers ───────────────────────────────────────────────────────────

    async def execute_sync(
        self,
        request: SyncExecutionRequest,
        trigger: ExecutionTrigger = ExecutionTrigger.MANUAL,
    ) -> Execution:
        """Run a sync to completion and return the terminal execution.

        Raises:
            ConfigurationError: The referenced configuration does not exist.
            ConflictError: A run for the same configuration is already active.
        """
        plan = await self._resolve_plan(request)
        execution = await self._create_execution(plan, trigger)
        return await self._run(execution, plan)

    async def start_sync(
        self,
        request: SyncExecutionRequest,
        trigger: ExecutionTrigger = ExecutionTrigger.MANUAL,
    ) -> Execution:
        """Create the execution and run it in the background; returns it PENDING."""
        plan = await self._resolve_plan(request)
        execution = await self._create_execution(plan, trigger)

        task = asyncio.create_task(self._run_background(execution, plan))
        self._background[task] = execution.id
        task.add_done_callback(lambda t: self._background.pop(t, None))
        return execution

    async def run_configuration(self, configuration_id: int) -> Execution:
        """Scheduled run of a stored configuration."""
        return await self.execute_sync(
            SyncExecutionRequest(sync_config_id=configuration_id),
            trigger=ExecutionTrigger.SCHEDULED,
        )

    async def execute_comparison(self, request: SyncExecutionRequest) -> list[ComparisonResult]:
        """Fetch source and target for every store and diff them without uploading.

        Stores whose fetch fails are logged and left out of the result.
        """
        plan = await self._resolve_plan(request)
        source_integration, target_integration = await self._load_integrations(plan)
        stores = await self._load_stores(plan)
        channel = await self._load_channel(plan)

        source = self._source_factory(source_integration)
        target: TargetAdapter | None = None
        try:
            target = self._target_factory(target_integration)
            step = StoreSyncStep(source, target, comparator=self._comparator, sleep=self._sleep)
            comparisons: list[ComparisonResult] = []
            for store in stores:
                try:
                    comparisons.append(await step.compare(store, plan.options))
                except SyncError as exc:
                    logger.warning(
                        "sync_service.comparison_failed",
                        store_id=store.id,
                        store_key=store.registration,
                        error=str(exc),
                    )
        finally:
            await self._close(source, target)

        names = {s.registration: s.name or s.registration for s in stores}
        await self._dispatcher.notify_comparison(comparisons, channel, names)
        logger.info(
            "sync_service.comparison_complete",
            stores=len(stores),
            compared=len(comparisons),
            divergent=sum(1 for c in comparisons if not c.in_sync),
        )
        return comparisons

    async def test_integration(self, integration_id: int) -> IntegrationTestResult | None:
        """Probe one integration; returns None when it does not exist."""
        integration = await self._configurations.get_integration(integration_id)
        if integration is None:
            return None
        adapter = build_adapter(integration)
        try:
            return await adapter.test_connection()
        finally:
            await adapter.aclose()

    # ── Queries ────────────────────────────────────────────────────────────

    async def get_execution(self, execution_id: str) -> Execution:
        return await self._tracker.get(execution_id)

    async def list_executions(self, limit: int = 50) -> list[Execution]:
        return await self._tracker.list_executions(limit)

    async def list_running(self) -> list[Execution]:
        return await self._tracker.list_running()

    async def cancel(self, execution_id: str) -> Execution:
        return await self._tracker.request_cancel(execution_id)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Cancel background runs cooperatively and wait for them to finalize."""
        if not self._background:
            return
        for execution_id in list(self._background.values()):
            self._tracker.cancel_token(execution_id).cancel("service shutting down")
        await asyncio.wait(set(self._background), timeout=timeout)

    # ── Internals ──────────────────────────────────────────────────────────

    async def _resolve_plan(self, request: SyncExecutionRequest) -> RunPlan:
        if request.sync_config_id is None:
            return RunPlan(
                source_integration_id=request.source_integration_id,  # type: ignore[arg-type]
                target_integration_id=request.target_integration_id,  # type: ignore[arg-type]
                options=request.options or SyncOptions(),
                notification_channel_id=request.notification_channel_id,
                store_ids=list(request.store_ids),
            )

        configuration = await self._configurations.get_configuration(request.sync_config_id)
        if configuration is None:
            raise ConfigurationError(f"Sync configuration {request.sync_config_id} not found")
        if not configuration.active:
            raise ConfigurationError(f"Sync configuration {configuration.id} is inactive")

        return RunPlan(
            source_integration_id=configuration.source_integration_id,
            target_integration_id=configuration.target_integration_id,
            options=request.options or configuration.options,
            configuration_id=configuration.id,
            name=configuration.name,
            notification_channel_id=request.notification_channel_id or configuration.notification_channel_id,
            store_ids=list(request.store_ids or configuration.store_ids),
        )

    async def _create_execution(self, plan: RunPlan, trigger: ExecutionTrigger) -> Execution:
        return await self._tracker.create(
            source_integration_id=plan.source_integration_id,
            target_integration_id=plan.target_integration_id,
            configuration_id=plan.configuration_id,
            notification_channel_id=plan.notification_channel_id,
            trigger=trigger,
            force=plan.options.force_sync,
        )

    async def _load_integrations(self, plan: RunPlan) -> tuple[Integration, Integration]:
        source = await self._configurations.get_integration(plan.source_integration_id)
        if source is None:
            raise ConfigurationError(f"Source integration {plan.source_integration_id} not found")
        target = await self._configurations.get_integration(plan.target_integration_id)
        if target is None:
            raise ConfigurationError(f"Target integration {plan.target_integration_id} not found")
        return source, target

    async def _load_stores(self, plan: RunPlan) -> list[Store]:
        stores = await self._configurations.list_active_stores(plan.store_ids)
        if not stores:
            raise ConfigurationError("No active stores to synchronize")
        return stores

    async def _load_channel(self, plan: RunPlan) -> NotificationChannel | None:
        if plan.notification_channel_id is None:
            return None
        channel = await self._configurations.get_notification_channel(plan.notification_channel_id)
        if channel is None:
            logger.warning("sync_service.channel_missing", channel_id=plan.notification_channel_id)
        return channel

    async def _run(self, execution: Execution, plan: RunPlan) -> Execution:
        log = logger.bind(execution_id=execution.id, configuration_id=plan.configuration_id)
        channel: NotificationChannel | None = None
        source: SourceAdapter | None = None
        target: TargetAdapter | None = None

        try:
            # Any failure here finalizes the execution so it never blocks later triggers
            try:
                channel = await self._load_channel(plan)
                source_integration, target_integration = await self._load_integrations(plan)
                stores = await self._load_stores(plan)
                source = self._source_factory(source_integration)
                target = self._target_factory(target_integration)
            except ConfigurationError as exc:
                log.error("sync_service.configuration_error", error=str(exc))
                return await self._fail(execution, plan, channel, str(exc))
            except Exception as exc:
                log.error("sync_service.setup_failed", error=str(exc), exc_info=True)
                return await self._fail(execution, plan, channel, f"Run setup failed: {exc}")

            await self._dispatcher.notify(
                execution,
                channel,
                NotificationEvent.START,
                store_count=len(stores),
                config_name=plan.name,
            )

            step = StoreSyncStep(
                source,
                target,
                comparator=self._comparator,
                product_cache=self._product_cache,
                sleep=self._sleep,
            )
            execution = await self._orchestrator.run(
                execution,
                stores,
                step,
                plan.options,
                cancel_token=self._tracker.cancel_token(execution.id),
            )
        finally:
            await self._close(source, target)

        await self._dispatcher.notify(execution, channel, NotificationEvent.FINISH, config_name=plan.name)
        return execution

    async def _fail(
        self,
        execution: Execution,
        plan: RunPlan,
        channel: NotificationChannel | None,
        error: str,
    ) -> Execution:
        execution = await self._tracker.fail(execution, error)
        await self._dispatcher.notify(execution, channel, NotificationEvent.FINISH, config_name=plan.name)
        return execution

    async def _run_background(self, execution: Execution, plan: RunPlan) -> None:
        try:
            await self._run(execution, plan)
        except Exception:
            # The durable row stays RUNNING and is reconciled on the next start
            logger.error("sync_service.background_run_failed", execution_id=execution.id, exc_info=True)

    async def _close(self, *adapters: SourceAdapter | TargetAdapter | None) -> None:
        for adapter in adapters:
            if adapter is None:
                continue
            try:
                await adapter.aclose()
            except Exception:
                logger.warning("sync_service.adapter_close_failed", exc_info=True)
