from __future__ import annotations
import re
from datetime import date, datetime
from stockledger.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError, ConflictError  # noqa: F401  (re-exported for routes)
from .models import PRODUCT_STATUSES


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Letters, digits, spaces and . _ / + -. Reports write sku verbatim.
SKU_PATTERN = re.compile(r"^[A-Za-z0-9._/+\- ]+$")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Integral floats from JSON clients (e.g. 5.0) are accepted, fractional ones are not
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_date(key: str, value: Any) -> date:
    try:
        d = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
    if d is None:
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
    return d


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        return coerce_date(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Keys in the allowlist that are not model columns (e.g. "initial_stock")
    are passed through untouched for the service to interpret.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols.get(k)
        if col is None:
            patch[k] = raw
            continue

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str) and val == "":
            # Blank optional text is stored as NULL (keeps the SKU unique index happy)
            if not col.nullable:
                raise ValidationError(f"{k} cannot be blank")
            val = None

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_price(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        price = patch[key]
        if price < 0:
            raise ValidationError(f"{key} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_product(patch: dict, *, current=None) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.

    `current` is the persisted product for updates, so cross-field rules
    (min_stock <= max_stock) are checked against the merged result.
    """
    if patch.get("sku") is not None and not SKU_PATTERN.match(patch["sku"]):
        raise ValidationError(
            "sku may only contain letters, digits, spaces and . _ / + -",
            details={"sku": patch["sku"][:100]},
        )

    _check_price(patch, "sale_price_cents")
    _check_price(patch, "cost_price_cents")

    for key in ("min_stock", "max_stock"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")

    min_stock = patch["min_stock"] if "min_stock" in patch else getattr(current, "min_stock", None)
    max_stock = patch["max_stock"] if "max_stock" in patch else getattr(current, "max_stock", None)
    if min_stock is not None and max_stock is not None and min_stock > max_stock:
        raise ValidationError("min_stock must be <= max_stock")

    if "status" in patch:
        if patch["status"] is None:
            raise ValidationError("status cannot be null")
        if patch["status"] not in PRODUCT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(PRODUCT_STATUSES)}")

    if "initial_stock" in patch and patch["initial_stock"] is not None:
        qty = coerce_int("initial_stock", patch["initial_stock"])
        if qty < 0:
            raise ValidationError("initial_stock must be >= 0")
        patch["initial_stock"] = qty


def require_positive_quantity(value: Any, key: str = "quantity") -> int:
    if value is None:
        raise ValidationError(f"{key} is required")
    qty = coerce_int(key, value)
    if qty <= 0:
        raise ValidationError(f"{key} must be > 0")
    return qty


def require_non_negative_cents(value: Any, key: str) -> int:
    if value is None:
        raise ValidationError(f"{key} is required")
    cents = coerce_int(key, value)
    if cents < 0:
        raise ValidationError(f"{key} must be >= 0")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def optional_text(value: Any, key: str, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text
