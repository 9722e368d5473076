"""Pydantic schemas for integrations, stores and the product records they exchange.

Defines:
- Enums: IntegrationType, AuthMethod, PaginationMethod
- Integration configs: RPConfig, CresceVendasConfig (closed tagged union on `kind`)
- Integration, Store
- Exchange payloads: ProductRecord, SourcePage, BatchResult, IntegrationTestResult
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

_URL_RE = re.compile(r"^https?://.+")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ── Enums ───────────────────────────────────────────────────────────────────


class IntegrationType(str, Enum):
    """Concrete integration kinds. RP is the source, CRESCEVENDAS the target."""

    RP = "RP"
    CRESCEVENDAS = "CRESCEVENDAS"


class AuthMethod(str, Enum):
    STATIC_TOKEN = "STATIC_TOKEN"
    LOGIN = "LOGIN"


class PaginationMethod(str, Enum):
    CURSOR = "CURSOR"
    OFFSET = "OFFSET"


# ── Integration Configs ─────────────────────────────────────────────────────


class PaginationConfig(BaseModel):
    """How the products endpoint is paged."""

    method: PaginationMethod = PaginationMethod.CURSOR
    param_name: str = "lastProductId"
    additional_params: dict[str, str] = Field(default_factory=dict)


class RPConfig(BaseModel):
    """Connection descriptor for the RP back-office API (source)."""

    kind: Literal["RP"] = "RP"
    base_url: str = ""
    auth_method: AuthMethod = AuthMethod.STATIC_TOKEN
    # STATIC_TOKEN
    static_token: str | None = None
    token_header: str = "Authorization"
    # LOGIN
    login_endpoint: str | None = None
    username: str | None = None
    password: str | None = None
    token_response_field: str = "response.token"
    # Products
    products_endpoint: str = ""
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)

    @field_validator("auth_method", mode="before")
    @classmethod
    def _accept_legacy_token(cls, value: Any) -> Any:
        # Older records store the static token method as "TOKEN"
        if value == "TOKEN":
            return AuthMethod.STATIC_TOKEN
        return value

    def validation_errors(self) -> list[str]:
        """Return every problem that would prevent the adapter from working."""
        errors: list[str] = []

        if not self.base_url:
            errors.append("base_url is required")
        elif not _URL_RE.match(self.base_url):
            errors.append("base_url must start with http:// or https://")

        if self.auth_method == AuthMethod.STATIC_TOKEN:
            if not self.static_token:
                errors.append("static_token is required for STATIC_TOKEN auth")
            if not self.token_header:
                errors.append("token_header is required for STATIC_TOKEN auth")
        elif self.auth_method == AuthMethod.LOGIN:
            if not self.login_endpoint:
                errors.append("login_endpoint is required for LOGIN auth")
            if not self.username or not self.password:
                errors.append("username and password are required for LOGIN auth")
            if not self.token_response_field:
                errors.append("token_response_field is required for LOGIN auth")

        if not self.products_endpoint:
            errors.append("products_endpoint is required")
        if not self.pagination.param_name:
            errors.append("pagination.param_name is required")

        return errors


class CampaignConfig(BaseModel):
    """Framing applied to every uploaded batch."""

    name_template: str = "{store} Descontos - {date}"
    start_time: str = "06:00"
    end_time: str = "23:59"
    start_delay_minutes: int = Field(default=5, ge=0)
    override_existing: bool = True
    default_limit: int = Field(default=1000, ge=1)


class CresceVendasConfig(BaseModel):
    """Connection descriptor for the CresceVendas campaign API (target)."""

    kind: Literal["CRESCEVENDAS"] = "CRESCEVENDAS"
    base_url: str = ""
    auth_headers: dict[str, str] = Field(default_factory=dict)
    send_products_endpoint: str = "/admin/integrations/discount_stores/batch_upload"
    get_products_endpoint: str = "/admin/integrations/discount_stores"
    campaign: CampaignConfig = Field(default_factory=CampaignConfig)

    def validation_errors(self) -> list[str]:
        """Return every problem that would prevent the adapter from working."""
        errors: list[str] = []

        if not self.base_url:
            errors.append("base_url is required")
        elif not _URL_RE.match(self.base_url):
            errors.append("base_url must start with http:// or https://")

        if not self.auth_headers:
            errors.append("auth_headers are required")
        else:
            for header in ("X-AdminUser-Email", "X-AdminUser-Token"):
                if not self.auth_headers.get(header):
                    errors.append(f"auth header {header} is required")

        email = self.auth_headers.get("X-AdminUser-Email")
        if email and not _EMAIL_RE.match(email):
            errors.append("X-AdminUser-Email must be a valid email address")

        return errors


IntegrationConfig = Annotated[
    Union[RPConfig, CresceVendasConfig],
    Field(discriminator="kind"),
]


class Integration(BaseModel):
    """A named, typed connection descriptor owned by the admin layer."""

    id: int
    name: str
    type: IntegrationType
    active: bool = True
    config: IntegrationConfig

    @model_validator(mode="before")
    @classmethod
    def _tag_config(cls, data: Any) -> Any:
        # Stored configs carry no discriminator; the integration type is the tag
        if isinstance(data, dict):
            config = data.get("config")
            integration_type = data.get("type")
            if isinstance(config, dict) and "kind" not in config and integration_type:
                tag = getattr(integration_type, "value", integration_type)
                data = {**data, "config": {**config, "kind": tag}}
        return data


# ── Stores ──────────────────────────────────────────────────────────────────


class Store(BaseModel):
    """A retail unit; `registration` is the key both systems understand."""

    id: int
    name: str = ""
    registration: str
    active: bool = True


# ── Exchange Payloads ───────────────────────────────────────────────────────


class ProductRecord(BaseModel):
    """One discounted product for one store. Identity is (store_id, code)."""

    code: str
    price: float
    final_price: float
    limit: int = 1000
    store_id: str
    starts_at: datetime | None = None
    expires_at: datetime | None = None

    @field_validator("code", "store_id", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value

    @field_validator("starts_at", "expires_at")
    @classmethod
    def _ensure_aware(cls, value: datetime | None) -> datetime | None:
        # Naive timestamps are treated as UTC so status checks never mix tz kinds
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def key(self) -> tuple[str, str]:
        return (self.store_id, self.code)

    def is_expired(self, now: datetime) -> bool:
        """True once now is past expires_at; a record without one never expires."""
        return self.expires_at is not None and now > self.expires_at


class SourcePage(BaseModel):
    """One page of source records plus the cursor for the next request."""

    records: list[ProductRecord] = Field(default_factory=list)
    next_cursor: int = 0
    has_more: bool = False
    raw_count: int = 0  # items in the payload, including ones that did not map


class BatchResult(BaseModel):
    """Outcome of one accepted batch upload."""

    batch_index: int = 0
    sent: int = 0
    campaign_id: str | None = None
    response: dict[str, Any] = Field(default_factory=dict)


class IntegrationTestResult(BaseModel):
    """Result of a connectivity probe against an integration."""

    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    response_time_ms: float = 0.0
