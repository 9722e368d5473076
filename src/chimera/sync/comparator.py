"""Source/target snapshot comparison for one store.

Pure classification: the Comparator never mutates either snapshot and never
talks to the network. Target-only records are counted but not treated as
errors; retention is the cleanup policy's business.
"""

from __future__ import annotations

from datetime import datetime, timezone

from src.chimera.config import get_settings
from src.chimera.integrations.schemas import ProductRecord
from src.chimera.sync.schemas import (
    ComparisonResult,
    PriceDifference,
    Severity,
    StatusDifference,
)


class Comparator:
    """Classifies divergence between a source and a target snapshot.

    Args:
        critical_threshold: Total differences at or above which severity is CRITICAL.
        normal_threshold: Total differences at or above which severity is NORMAL.
            Below it the store is considered in sync.
    """

    def __init__(
        self,
        critical_threshold: int | None = None,
        normal_threshold: int | None = None,
    ) -> None:
        settings = get_settings()
        self.critical_threshold = (
            critical_threshold if critical_threshold is not None else settings.COMPARISON_CRITICAL_THRESHOLD
        )
        self.normal_threshold = (
            normal_threshold if normal_threshold is not None else settings.COMPARISON_NORMAL_THRESHOLD
        )

    def severity_for(self, total_differences: int) -> Severity:
        if total_differences >= self.critical_threshold:
            return Severity.CRITICAL
        if total_differences >= self.normal_threshold:
            return Severity.NORMAL
        return Severity.NONE

    def diff(
        self,
        source: list[ProductRecord],
        target: list[ProductRecord],
        now: datetime | None = None,
        store_id: str | None = None,
    ) -> ComparisonResult:
        """Compare two snapshots keyed by (store_id, code).

        Args:
            source: Records the source currently publishes.
            target: Records the target currently holds.
            now: Reference instant for expiry status (defaults to utcnow).
            store_id: Store key to report; inferred from the records when omitted.

        Returns:
            ComparisonResult with missing, price and status differences.
        """
        now = now or datetime.now(timezone.utc)
        target_by_key = {record.key: record for record in target}
        source_keys: set[tuple[str, str]] = set()

        missing: list[ProductRecord] = []
        price_differences: list[PriceDifference] = []
        status_differences: list[StatusDifference] = []

        for record in source:
            source_keys.add(record.key)
            existing = target_by_key.get(record.key)

            if existing is None:
                missing.append(record)
                continue

            # Zero-tolerance equality: any cent of drift is a difference
            if existing.price != record.price or existing.final_price != record.final_price:
                price_differences.append(
                    PriceDifference(
                        code=record.code,
                        old_price=existing.price,
                        new_price=record.price,
                        old_final_price=existing.final_price,
                        new_final_price=record.final_price,
                    )
                )

            # A campaign already uploaded but starting later today counts as active
            source_active = not record.is_expired(now)
            target_active = not existing.is_expired(now)
            if source_active != target_active:
                status_differences.append(
                    StatusDifference(
                        code=record.code,
                        source_active=source_active,
                        target_active=target_active,
                    )
                )

        extraneous = sum(1 for key in target_by_key if key not in source_keys)

        if store_id is None:
            sample = source[0] if source else (target[0] if target else None)
            store_id = sample.store_id if sample else ""

        result = ComparisonResult(
            store_id=store_id,
            source_count=len(source),
            target_count=len(target),
            missing_in_target=missing,
            price_differences=price_differences,
            status_differences=status_differences,
            extraneous_in_target=extraneous,
        )
        result.severity = self.severity_for(result.total_differences)
        return result
