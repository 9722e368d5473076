"""Field-name mappings between the RP / CresceVendas payloads and ProductRecord.

Defines:
- RP_FIELD_ALIASES: Candidate RP payload keys for each ProductRecord field,
  tried in order (RP endpoints differ between API versions).
- from_rp_product(): RP product dict -> ProductRecord
- from_crescevendas_line(): CresceVendas discount line -> ProductRecord
- to_crescevendas_line(): ProductRecord -> discount_store_lines entry
- daily_window(): the default [06:00, 23:59:59] local validity of a source record
"""

from __future__ import annotations

from datetime import datetime, time, tzinfo
from typing import Any

import structlog

from src.chimera.integrations.schemas import ProductRecord

logger = structlog.get_logger(__name__)


# ── RP Field Aliases ───────────────────────────────────────────────────────

RP_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "code": ("codigo", "code", "id"),
    "price": ("preco", "price"),
    "final_price": ("precoVenda2", "preco2", "final_price"),
    "limit": ("limite", "limit"),
}

DEFAULT_LIMIT = 1000

RP_DAY_START = time(6, 0)
RP_DAY_END = time(23, 59, 59)


# ── Helpers ────────────────────────────────────────────────────────────────


def _first(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_datetime(value: Any, tz: tzinfo) -> datetime | None:
    """Parse an ISO-8601 string; naive values are interpreted in `tz`."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("field_mapping.unparseable_datetime", value=value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def daily_window(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """Validity window applied to source records: today 06:00 to 23:59:59 local."""
    local_today = now.astimezone(tz).date()
    return (
        datetime.combine(local_today, RP_DAY_START, tzinfo=tz),
        datetime.combine(local_today, RP_DAY_END, tzinfo=tz),
    )


# ── Conversion Functions ───────────────────────────────────────────────────


def from_rp_product(
    raw: dict[str, Any],
    store_key: str,
    window: tuple[datetime, datetime] | None = None,
) -> ProductRecord | None:
    """Map one RP product dict to a ProductRecord.

    Returns None when the payload has no code or no price, or when a price
    or limit is not numeric.
    """
    code = _first(raw, RP_FIELD_ALIASES["code"])
    price = _first(raw, RP_FIELD_ALIASES["price"])
    # Without a promotional price the product is published at its list price
    final_price = _first(raw, RP_FIELD_ALIASES["final_price"]) or price

    if code is None or price is None:
        logger.debug("field_mapping.rp_product_incomplete", store_key=store_key, raw_id=raw.get("id"))
        return None

    limit = _first(raw, RP_FIELD_ALIASES["limit"]) or DEFAULT_LIMIT
    starts_at, expires_at = window if window else (None, None)

    # pydantic's ValidationError is a ValueError
    try:
        return ProductRecord(
            code=code,
            price=float(price),
            final_price=float(final_price),
            limit=int(limit),
            store_id=store_key,
            starts_at=starts_at,
            expires_at=expires_at,
        )
    except (TypeError, ValueError):
        logger.warning(
            "field_mapping.rp_product_malformed",
            store_key=store_key,
            code=code,
            price=price,
            final_price=final_price,
            limit=limit,
        )
        return None


def from_crescevendas_line(
    raw: dict[str, Any],
    store_key: str,
    tz: tzinfo,
) -> ProductRecord | None:
    """Map one CresceVendas discount line to a ProductRecord; None when incomplete or malformed."""
    code = raw.get("code")
    if code is None or raw.get("price") is None or raw.get("final_price") is None:
        return None

    try:
        return ProductRecord(
            code=code,
            price=float(raw["price"]),
            final_price=float(raw["final_price"]),
            limit=int(raw.get("limit") or DEFAULT_LIMIT),
            store_id=store_key,
            starts_at=parse_datetime(raw.get("start_at") or raw.get("start_date"), tz),
            expires_at=parse_datetime(raw.get("expire_at") or raw.get("end_date"), tz),
        )
    except (TypeError, ValueError):
        logger.warning("field_mapping.crescevendas_line_malformed", store_key=store_key, code=code)
        return None


def to_crescevendas_line(record: ProductRecord, default_limit: int = DEFAULT_LIMIT) -> dict[str, Any]:
    """Convert a ProductRecord to a `discount_store_lines` entry."""
    return {
        "code": record.code,
        "price": record.price,
        "final_price": record.final_price,
        "limit": record.limit or default_limit,
    }
