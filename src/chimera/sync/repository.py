"""Sync engine repositories -- async reads of admin-owned config, writes of executions and products.

All repositories use the session_factory callable pattern: an async
generator yielding one AsyncSession per operation (src.chimera.core.database
.get_session in production). Rows are converted to Pydantic schemas at the
boundary via the _model_to_* helpers; JSON columns round-trip through
model_dump(mode="json") / model_validate().
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.chimera.integrations.schemas import Integration, ProductRecord, Store
from src.chimera.notifications.schemas import NotificationChannel
from src.chimera.sync.models import (
    IntegrationModel,
    NotificationChannelModel,
    ProductModel,
    StoreModel,
    SyncConfigurationModel,
    SyncExecutionModel,
)
from src.chimera.sync.schemas import (
    CleanupPolicy,
    Execution,
    ExecutionStatus,
    SyncConfiguration,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_integration(model: IntegrationModel) -> Integration:
    return Integration.model_validate(
        {
            "id": model.id,
            "name": model.name,
            "type": model.type,
            "active": model.active,
            "config": dict(model.config or {}),
        }
    )


def _model_to_store(model: StoreModel) -> Store:
    return Store(id=model.id, name=model.name or "", registration=model.registration, active=model.active)


def _model_to_channel(model: NotificationChannelModel) -> NotificationChannel:
    return NotificationChannel(
        id=model.id,
        name=model.name,
        type=model.type,
        active=model.active,
        config=dict(model.config or {}),
        on_start=model.on_start,
        on_success=model.on_success,
        on_failure=model.on_failure,
    )


def _model_to_configuration(model: SyncConfigurationModel) -> SyncConfiguration:
    return SyncConfiguration.model_validate(
        {
            "id": model.id,
            "name": model.name,
            "source_integration_id": model.source_integration_id,
            "target_integration_id": model.target_integration_id,
            "notification_channel_id": model.notification_channel_id,
            "store_ids": list(model.store_ids or []),
            "schedule": dict(model.schedule or {}),
            "options": dict(model.options or {}),
            "active": model.active,
        }
    )


def _model_to_execution(model: SyncExecutionModel) -> Execution:
    return Execution.model_validate(
        {
            "id": model.id,
            "configuration_id": model.configuration_id,
            "source_integration_id": model.source_integration_id,
            "target_integration_id": model.target_integration_id,
            "notification_channel_id": model.notification_channel_id,
            "trigger": model.trigger,
            "status": model.status,
            "started_at": model.started_at,
            "finished_at": model.finished_at,
            "results": list(model.results or []),
            "summary": dict(model.summary or {}),
            "error": model.error,
        }
    )


def _execution_to_model(execution: Execution) -> SyncExecutionModel:
    data = execution.model_dump(mode="json", include={"results", "summary"})
    return SyncExecutionModel(
        id=execution.id,
        configuration_id=execution.configuration_id,
        source_integration_id=execution.source_integration_id,
        target_integration_id=execution.target_integration_id,
        notification_channel_id=execution.notification_channel_id,
        trigger=execution.trigger.value,
        status=execution.status.value,
        started_at=execution.started_at,
        finished_at=execution.finished_at,
        results=data["results"],
        summary=data["summary"],
        error=execution.error,
    )


# ── Configuration (read-only) ───────────────────────────────────────────────


class ConfigurationRepository:
    """Read access to integrations, stores, channels and sync configurations."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_integration(self, integration_id: int) -> Integration | None:
        async for session in self._session_factory():
            model = await session.get(IntegrationModel, integration_id)
            return _model_to_integration(model) if model else None

    async def get_configuration(self, configuration_id: int) -> SyncConfiguration | None:
        async for session in self._session_factory():
            model = await session.get(SyncConfigurationModel, configuration_id)
            return _model_to_configuration(model) if model else None

    async def get_notification_channel(self, channel_id: int) -> NotificationChannel | None:
        async for session in self._session_factory():
            model = await session.get(NotificationChannelModel, channel_id)
            return _model_to_channel(model) if model else None

    async def list_active_stores(self, store_ids: list[int] | None = None) -> list[Store]:
        """Active stores, restricted to `store_ids` when given (empty = all)."""
        async for session in self._session_factory():
            stmt = select(StoreModel).where(StoreModel.active.is_(True))
            if store_ids:
                stmt = stmt.where(StoreModel.id.in_(store_ids))
            result = await session.execute(stmt.order_by(StoreModel.id))
            return [_model_to_store(m) for m in result.scalars().all()]

    async def list_scheduled_configurations(self) -> list[SyncConfiguration]:
        """Active configurations that carry a schedule descriptor."""
        async for session in self._session_factory():
            stmt = select(SyncConfigurationModel).where(SyncConfigurationModel.active.is_(True))
            result = await session.execute(stmt.order_by(SyncConfigurationModel.id))
            configurations = [_model_to_configuration(m) for m in result.scalars().all()]
            return [
                c for c in configurations if c.schedule.cron or c.schedule.sync_time or c.schedule.compare_time
            ]


# ── Executions ──────────────────────────────────────────────────────────────


class ExecutionRepository:
    """Durable store for executions (implements tracker.ExecutionStore)."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def save(self, execution: Execution) -> None:
        async for session in self._session_factory():
            await session.merge(_execution_to_model(execution))
            await session.commit()

    async def get(self, execution_id: str) -> Execution | None:
        async for session in self._session_factory():
            model = await session.get(SyncExecutionModel, execution_id)
            return _model_to_execution(model) if model else None

    async def list_recent(self, limit: int) -> list[Execution]:
        async for session in self._session_factory():
            stmt = select(SyncExecutionModel).order_by(SyncExecutionModel.started_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_execution(m) for m in result.scalars().all()]

    async def list_by_status(self, statuses: tuple[ExecutionStatus, ...]) -> list[Execution]:
        async for session in self._session_factory():
            stmt = (
                select(SyncExecutionModel)
                .where(SyncExecutionModel.status.in_([s.value for s in statuses]))
                .order_by(SyncExecutionModel.started_at)
            )
            result = await session.execute(stmt)
            return [_model_to_execution(m) for m in result.scalars().all()]


# ── Product Cache ───────────────────────────────────────────────────────────


class ProductCacheRepository:
    """Per-store snapshot of the last source fetch (implements store_step.ProductCache).

    Cleanup only ever touches this table; the target platform is never
    deleted from.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def refresh(
        self,
        store_key: str,
        records: list[ProductRecord],
        policy: CleanupPolicy,
        now: datetime,
    ) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                select(ProductModel).where(ProductModel.store_registration == store_key)
            )
            existing = {m.code: m for m in result.scalars().all()}

            for record in records:
                model = existing.get(record.code)
                if model is None:
                    model = ProductModel(store_registration=store_key, code=record.code)
                    session.add(model)
                    existing[record.code] = model
                model.price = record.price
                model.final_price = record.final_price
                model.limit = record.limit
                model.starts_at = record.starts_at
                model.expires_at = record.expires_at

            removed = 0
            if policy == CleanupPolicy.EXPIRED_ONLY:
                stmt = delete(ProductModel).where(
                    ProductModel.store_registration == store_key,
                    ProductModel.expires_at.is_not(None),
                    ProductModel.expires_at < now,
                )
                removed = (await session.execute(stmt)).rowcount or 0
            elif policy == CleanupPolicy.ABSENT_FROM_SOURCE:
                source_codes = {r.code for r in records}
                stale = [code for code in existing if code not in source_codes]
                if stale:
                    stmt = delete(ProductModel).where(
                        ProductModel.store_registration == store_key,
                        ProductModel.code.in_(stale),
                    )
                    removed = (await session.execute(stmt)).rowcount or 0

            await session.commit()
            logger.debug(
                "product_cache.refreshed",
                store_key=store_key,
                upserted=len(records),
                removed=removed,
                policy=policy.value,
            )
            return removed
