"""Pydantic schemas for sync configurations, executions and their results.

Defines:
- Enums: CleanupPolicy, ExecutionStatus, ExecutionTrigger, StoreSyncStatus, Severity
- SyncOptions, SyncSchedule, SyncConfiguration
- Comparison: PriceDifference, StatusDifference, ComparisonResult
- Results: StoreSyncResult, ExecutionSummary, Execution
- Requests: SyncExecutionRequest
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, computed_field, model_validator

from src.chimera.integrations.schemas import ProductRecord


# ── Enums ───────────────────────────────────────────────────────────────────


class CleanupPolicy(str, Enum):
    """What `cleanup_old_data` removes from the local product cache."""

    NONE = "NONE"
    EXPIRED_ONLY = "EXPIRED_ONLY"
    ABSENT_FROM_SOURCE = "ABSENT_FROM_SOURCE"


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset(
    {
        ExecutionStatus.SUCCESS,
        ExecutionStatus.FAILED,
        ExecutionStatus.PARTIAL,
        ExecutionStatus.CANCELLED,
    }
)


class ExecutionTrigger(str, Enum):
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"


class StoreSyncStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


class Severity(str, Enum):
    """NONE means the store is in sync."""

    NONE = "NONE"
    NORMAL = "NORMAL"
    CRITICAL = "CRITICAL"


# ── Configuration ───────────────────────────────────────────────────────────


class SyncOptions(BaseModel):
    """Per-run knobs. `retry_delay` is in milliseconds."""

    batch_size: int = Field(default=500, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: int = Field(default=1000, ge=0)
    parallel_processing: bool = False
    cleanup_old_data: bool = False
    cleanup_policy: CleanupPolicy = CleanupPolicy.NONE
    skip_comparison: bool = False
    force_sync: bool = False

    @model_validator(mode="after")
    def _explicit_cleanup_policy(self) -> SyncOptions:
        if self.cleanup_old_data and self.cleanup_policy == CleanupPolicy.NONE:
            raise ValueError("cleanup_old_data requires an explicit cleanup_policy")
        return self


class SyncSchedule(BaseModel):
    """Read-only schedule descriptor; the cron firing itself lives outside the engine."""

    cron: str | None = None
    sync_time: str | None = None
    compare_time: str | None = None


class SyncConfiguration(BaseModel):
    id: int
    name: str
    source_integration_id: int
    target_integration_id: int
    notification_channel_id: int | None = None
    store_ids: list[int] = Field(default_factory=list)  # empty = all active stores
    schedule: SyncSchedule = Field(default_factory=SyncSchedule)
    options: SyncOptions = Field(default_factory=SyncOptions)
    active: bool = True


# ── Comparison ──────────────────────────────────────────────────────────────


class PriceDifference(BaseModel):
    code: str
    old_price: float
    new_price: float
    old_final_price: float
    new_final_price: float


class StatusDifference(BaseModel):
    code: str
    source_active: bool
    target_active: bool


class ComparisonResult(BaseModel):
    """Divergence between the source and target snapshot of one store."""

    store_id: str
    source_count: int = 0
    target_count: int = 0
    missing_in_target: list[ProductRecord] = Field(default_factory=list)
    price_differences: list[PriceDifference] = Field(default_factory=list)
    status_differences: list[StatusDifference] = Field(default_factory=list)
    extraneous_in_target: int = 0
    severity: Severity = Severity.NONE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_differences(self) -> int:
        return len(self.missing_in_target) + len(self.price_differences) + len(self.status_differences)

    @property
    def in_sync(self) -> bool:
        return self.severity == Severity.NONE


# ── Results ─────────────────────────────────────────────────────────────────


class StoreSyncResult(BaseModel):
    store_id: int
    store_name: str = ""
    registration: str
    status: StoreSyncStatus
    fetched: int = 0
    sent: int = 0
    batches_total: int = 0
    batches_sent: int = 0
    attempts: int = 0
    comparison: ComparisonResult | None = None
    cleaned: int = 0
    error: str | None = None
    execution_time_ms: float = 0.0


class ExecutionSummary(BaseModel):
    total_stores: int = 0
    successful_stores: int = 0
    failed_stores: int = 0
    skipped_stores: int = 0
    products_fetched: int = 0
    products_sent: int = 0
    differences_found: int = 0
    errors: int = 0
    execution_time_ms: float = 0.0

    @classmethod
    def from_results(cls, results: list[StoreSyncResult], execution_time_ms: float = 0.0) -> ExecutionSummary:
        """Aggregate per-store results once every worker has finished."""
        return cls(
            total_stores=len(results),
            successful_stores=sum(1 for r in results if r.status == StoreSyncStatus.SUCCESS),
            failed_stores=sum(
                1
                for r in results
                if r.status in (StoreSyncStatus.FAILED, StoreSyncStatus.PARTIAL, StoreSyncStatus.CANCELLED)
            ),
            skipped_stores=sum(1 for r in results if r.status == StoreSyncStatus.SKIPPED),
            products_fetched=sum(r.fetched for r in results),
            products_sent=sum(r.sent for r in results),
            differences_found=sum(r.comparison.total_differences for r in results if r.comparison),
            errors=sum(1 for r in results if r.error),
            execution_time_ms=execution_time_ms,
        )


class Execution(BaseModel):
    """One run of a configuration (or of an ad-hoc request)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    configuration_id: int | None = None
    source_integration_id: int
    target_integration_id: int
    notification_channel_id: int | None = None
    trigger: ExecutionTrigger = ExecutionTrigger.MANUAL
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    results: list[StoreSyncResult] = Field(default_factory=list)
    summary: ExecutionSummary = Field(default_factory=ExecutionSummary)
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def conflict_key(self) -> str:
        """Runs sharing this key must not overlap."""
        if self.configuration_id is not None:
            return f"config:{self.configuration_id}"
        return f"pair:{self.source_integration_id}:{self.target_integration_id}"


# ── Requests ────────────────────────────────────────────────────────────────


class SyncExecutionRequest(BaseModel):
    """Manual trigger: a stored configuration, or an ad-hoc source/target pair."""

    sync_config_id: int | None = None
    source_integration_id: int | None = None
    target_integration_id: int | None = None
    notification_channel_id: int | None = None
    store_ids: list[int] = Field(default_factory=list)
    options: SyncOptions | None = None

    @model_validator(mode="after")
    def _config_or_pair(self) -> SyncExecutionRequest:
        if self.sync_config_id is None and (
            self.source_integration_id is None or self.target_integration_id is None
        ):
            raise ValueError("either sync_config_id or source_integration_id and target_integration_id are required")
        return self
