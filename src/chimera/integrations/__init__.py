"""Integration layer -- pluggable adapters for the product source and the campaign target.

Provides abstract SourceAdapter / TargetAdapter interfaces with concrete implementations:
- RPAdapter: RP back-office products API (source)
- CresceVendasAdapter: CresceVendas discount-store API (target)

Integration configs are a closed tagged union (RPConfig | CresceVendasConfig)
resolved once, here, when the adapter for a run is built.
"""

from __future__ import annotations

from typing import Any

from src.chimera.integrations.adapter import SourceAdapter, TargetAdapter
from src.chimera.integrations.crescevendas import CresceVendasAdapter
from src.chimera.integrations.rp import RPAdapter
from src.chimera.integrations.schemas import (
    CresceVendasConfig,
    Integration,
    IntegrationType,
    RPConfig,
)
from src.chimera.sync.errors import ConfigurationError

_CONFIG_TYPES = {
    IntegrationType.RP: RPConfig,
    IntegrationType.CRESCEVENDAS: CresceVendasConfig,
}


def _check(integration: Integration, expected: IntegrationType) -> None:
    if not integration.active:
        raise ConfigurationError(f"Integration {integration.id} ({integration.name}) is inactive")
    if integration.type != expected:
        raise ConfigurationError(
            f"Integration {integration.id} is of type {integration.type.value}, expected {expected.value}"
        )
    if not isinstance(integration.config, _CONFIG_TYPES[expected]):
        raise ConfigurationError(f"Integration {integration.id} config does not match type {expected.value}")
    errors = integration.config.validation_errors()
    if errors:
        raise ConfigurationError(
            f"Integration {integration.id} ({integration.name}) is misconfigured: " + "; ".join(errors)
        )


def build_source_adapter(integration: Integration, **kwargs: Any) -> SourceAdapter:
    """Resolve a source integration into its adapter; raises ConfigurationError."""
    _check(integration, IntegrationType.RP)
    return RPAdapter(integration.config, **kwargs)  # type: ignore[arg-type]


def build_target_adapter(integration: Integration, **kwargs: Any) -> TargetAdapter:
    """Resolve a target integration into its adapter; raises ConfigurationError."""
    _check(integration, IntegrationType.CRESCEVENDAS)
    return CresceVendasAdapter(integration.config, **kwargs)  # type: ignore[arg-type]


def build_adapter(integration: Integration, **kwargs: Any) -> SourceAdapter | TargetAdapter:
    """Build whichever adapter the integration type calls for (used by connection tests)."""
    if integration.type == IntegrationType.RP:
        return RPAdapter(integration.config, **kwargs)  # type: ignore[arg-type]
    return CresceVendasAdapter(integration.config, **kwargs)  # type: ignore[arg-type]


__all__ = [
    "SourceAdapter",
    "TargetAdapter",
    "RPAdapter",
    "CresceVendasAdapter",
    "build_source_adapter",
    "build_target_adapter",
    "build_adapter",
]
