"""Sync engine -- store-partitioned reconciliation between the product source and the campaign target.

Components:
- errors: SyncError taxonomy (retryable vs. fatal)
- schemas: options, executions, per-store results, comparison results
- comparator: Comparator (missing / price / status differences, severity)
- retry: RetryPolicy (fixed-delay tenacity loop)
- store_step: StoreSyncStep (fetch -> cache -> compare -> batched upload)
- orchestrator: SyncOrchestrator (bounded fan-out, terminal status, timeout)
- tracker: ExecutionTracker (lifecycle writes, conflicts, cancellation, recovery)
- models / repository: SQLAlchemy persistence
- service: SyncService (trigger surface)
- scheduler: task functions for scheduled configurations
"""
