"""Sync engine persistence models.

Six SQLAlchemy models on the shared declarative Base:
- IntegrationModel: Source/target connection descriptors (config as JSON)
- StoreModel: Retail units keyed by registration
- NotificationChannelModel: Delivery channels with trigger toggles
- SyncConfigurationModel: Source + target + channel + stores + options
- SyncExecutionModel: One row per run (results and summary as JSON)
- ProductModel: Last source snapshot per store (product cache)

Integrations, stores, channels and configurations are owned by the admin
layer; the engine only reads them. Executions and products are written here.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from src.chimera.core.database import Base


class IntegrationModel(Base):
    """A typed connection descriptor (RP source or CresceVendas target)."""

    __tablename__ = "integrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    config: Mapped[dict] = mapped_column(JSON, default=dict, server_default=text("'{}'::json"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class StoreModel(Base):
    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    registration: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NotificationChannelModel(Base):
    __tablename__ = "notification_channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    config: Mapped[dict] = mapped_column(JSON, default=dict, server_default=text("'{}'::json"))
    on_start: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    on_success: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    on_failure: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))


class SyncConfigurationModel(Base):
    """Binds a source, a target, an optional channel and a store list."""

    __tablename__ = "sync_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    source_integration_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("integrations.id"), nullable=False
    )
    target_integration_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("integrations.id"), nullable=False
    )
    notification_channel_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("notification_channels.id"), nullable=True
    )
    store_ids: Mapped[list] = mapped_column(JSON, default=list, server_default=text("'[]'::json"))
    schedule: Mapped[dict] = mapped_column(JSON, default=dict, server_default=text("'{}'::json"))
    options: Mapped[dict] = mapped_column(JSON, default=dict, server_default=text("'{}'::json"))
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))


class SyncExecutionModel(Base):
    """Durable execution record; RUNNING rows after a restart are interrupted runs."""

    __tablename__ = "sync_executions"
    __table_args__ = (
        Index("ix_sync_executions_status", "status"),
        Index("ix_sync_executions_started_at", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    configuration_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("sync_configurations.id"), nullable=True
    )
    source_integration_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_integration_id: Mapped[int] = mapped_column(Integer, nullable=False)
    notification_channel_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    results: Mapped[list] = mapped_column(JSON, default=list, server_default=text("'[]'::json"))
    summary: Mapped[dict] = mapped_column(JSON, default=dict, server_default=text("'{}'::json"))
    error: Mapped[str | None] = mapped_column(Text, nullable=True)


class ProductModel(Base):
    """Cached source record; one row per (store_registration, code)."""

    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("store_registration", "code", name="uq_product_store_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_registration: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    final_price: Mapped[float] = mapped_column(Float, nullable=False)
    limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
