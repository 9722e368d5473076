"""Error taxonomy for the sync engine.

Retryable: SourceFetchError, TargetUploadError, TargetFetchError.
Fatal for the store: AuthExtractionError, PaginationOverrunError.
Fatal for the run (raised before any store is processed): ConfigurationError.
Trigger-level: ConflictError, ExecutionNotFoundError, ExecutionStateError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.chimera.integrations.schemas import ProductRecord


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


class ConfigurationError(SyncError):
    """Missing or inconsistent integration/configuration fields.

    Always detected before any network call is made.
    """


class AuthExtractionError(SyncError):
    """Login succeeded but the token was not found at the configured path."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Token not found in login response at path '{path}'")


class SourceFetchError(SyncError):
    """A source page request failed (HTTP error, timeout, malformed JSON).

    Carries the cursor of the failed page and the records collected before
    it so the caller can resume from the same cursor.
    """

    def __init__(
        self,
        store_key: str,
        cursor: int,
        message: str,
        records: list[ProductRecord] | None = None,
    ) -> None:
        self.store_key = store_key
        self.cursor = cursor
        self.records = list(records or [])
        super().__init__(f"Source fetch failed for store {store_key} at cursor {cursor}: {message}")


class PaginationOverrunError(SyncError):
    """The source kept returning pages past the safety cap."""

    def __init__(self, store_key: str, cap: int, fetched: int) -> None:
        self.store_key = store_key
        self.cap = cap
        self.fetched = fetched
        super().__init__(
            f"Pagination for store {store_key} exceeded safety cap of {cap} records "
            f"({fetched} fetched)"
        )


class TargetUploadError(SyncError):
    """A batch upload to the target failed; the batch is attached for retry."""

    def __init__(self, store_key: str, records: list[ProductRecord], message: str) -> None:
        self.store_key = store_key
        self.records = records
        super().__init__(
            f"Target upload failed for store {store_key} ({len(records)} records): {message}"
        )


class TargetFetchError(SyncError):
    """Reading the target's current listing for a store failed."""

    def __init__(self, store_key: str, message: str) -> None:
        self.store_key = store_key
        super().__init__(f"Target fetch failed for store {store_key}: {message}")


class ConflictError(SyncError):
    """A run for the same configuration is still active."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Sync already running as execution {execution_id}")


class ExecutionNotFoundError(SyncError):
    """No execution with the given id exists."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class ExecutionStateError(SyncError):
    """An illegal lifecycle transition was attempted on an execution."""

    def __init__(self, execution_id: str, from_status: str, to_status: str) -> None:
        self.execution_id = execution_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid execution transition for {execution_id}: {from_status} -> {to_status}"
        )
