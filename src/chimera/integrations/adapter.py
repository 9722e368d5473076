"""Adapter abstract base classes -- the interface every Source and Target backend implements.

A SourceAdapter authenticates against a back-office API and pages through the
discounted products of one store. A TargetAdapter reads and writes the campaign
listings of one store. Both are scoped to a single run: the service builds them
from an Integration, hands them to the orchestrator and closes them afterwards.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.chimera.integrations.schemas import (
    BatchResult,
    IntegrationTestResult,
    ProductRecord,
    SourcePage,
)


class SourceAdapter(ABC):
    """Abstract interface for the product source (back-office ERP).

    Methods:
        authenticate: Obtain (or reuse) the access token.
        fetch_page: Fetch one page of records for a store at a cursor.
        fetch_all: Page through a store until the first empty page.
        test_connection: Probe credentials and the products endpoint.
        aclose: Release the underlying HTTP client.
    """

    @abstractmethod
    async def authenticate(self) -> str:
        """Return a usable access token, logging in if none is cached."""
        ...

    @abstractmethod
    async def fetch_page(self, store_key: str, cursor: int) -> SourcePage:
        """Fetch a single page of records starting after `cursor`."""
        ...

    @abstractmethod
    async def fetch_all(
        self,
        store_key: str,
        cursor: int = 0,
        collected: list[ProductRecord] | None = None,
    ) -> list[ProductRecord]:
        """Fetch every record of a store.

        `cursor` and `collected` let a caller resume a fetch that failed
        mid-way (see SourceFetchError.cursor / .records).
        """
        ...

    @abstractmethod
    async def test_connection(self) -> IntegrationTestResult:
        """Check that the source is reachable with the configured credentials."""
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
        return None


class TargetAdapter(ABC):
    """Abstract interface for the campaign target platform.

    Methods:
        fetch_existing: Current listing the target holds for a store.
        send_batch: Upload one batch of records as a framed campaign.
        campaign_window: Start/end an upload made now would be framed with.
        test_connection: Probe credentials and the listing endpoint.
        aclose: Release the underlying HTTP client.
    """

    @abstractmethod
    async def fetch_existing(self, store_key: str) -> list[ProductRecord]:
        """Return the records currently published for a store."""
        ...

    @abstractmethod
    async def send_batch(
        self,
        store_key: str,
        records: list[ProductRecord],
        batch_index: int = 0,
    ) -> BatchResult:
        """Upload a batch; raises TargetUploadError with the batch attached on failure."""
        ...

    def campaign_window(self, now: datetime | None = None) -> tuple[datetime, datetime] | None:
        """Validity an upload made at `now` receives, or None when the target does not frame uploads."""
        return None

    @abstractmethod
    async def test_connection(self) -> IntegrationTestResult:
        """Check that the target is reachable with the configured credentials."""
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
        return None
