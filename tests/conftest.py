"""Fixtures for the sync engine tests.

Test doubles live in tests/doubles.py; these fixtures hand out fresh
instances per test.
"""

from __future__ import annotations

import pytest

from src.chimera.integrations.schemas import Store
from src.chimera.sync.comparator import Comparator
from src.chimera.sync.tracker import ExecutionTracker
from tests.doubles import (
    FakeSource,
    FakeTarget,
    InMemoryConfigurationRepository,
    InMemoryExecutionStore,
    InMemoryProductCache,
)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def execution_store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def tracker(execution_store: InMemoryExecutionStore) -> ExecutionTracker:
    return ExecutionTracker(execution_store)


@pytest.fixture
def comparator() -> Comparator:
    return Comparator(critical_threshold=50, normal_threshold=1)


@pytest.fixture
def product_cache() -> InMemoryProductCache:
    return InMemoryProductCache()


@pytest.fixture
def configurations() -> InMemoryConfigurationRepository:
    return InMemoryConfigurationRepository()


@pytest.fixture
def stores() -> list[Store]:
    return [
        Store(id=1, name="Centro", registration="001"),
        Store(id=2, name="Norte", registration="002"),
    ]
