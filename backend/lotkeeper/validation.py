from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from lotkeeper.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta


# Largest quantity a single lot or allocation may carry
MAX_QUANTITY = 10_000_000

# Per-unit and lab costs are entered in major currency units
MAX_COST = Decimal("99999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate lot number)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.column_attrs}


def _column_for(attr) -> Any:
    return attr.columns[0]


def _coerce_value(key: str, col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise ValidationError(f"{key} must be an integer, not a decimal")
        raise ValidationError(f"{key} must be an integer")

    # Decimals (costs). Non-finite input is dropped to NULL rather than stored.
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{key} must be a number")
        try:
            dec = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{key} must be a number")
        if not dec.is_finite():
            return None
        return dec

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{key} must be a datetime")

    if isinstance(coltype, JSON):
        if not isinstance(value, dict):
            raise ValidationError(f"{key} must be an object")
        return value

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
    aliases: dict[str, str] | None = None,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    aliases maps payload keys onto mapped attribute names
    (e.g. "metadata" -> "metadata_json").
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    aliases = aliases or {}

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    attrs = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if aliases.get(k, k) not in attrs:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        attr_key = aliases.get(k, k)
        col = _column_for(attrs[attr_key])

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[attr_key] = None
            continue

        val = _coerce_value(k, col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[attr_key] = val

    return patch


def enforce_rules_batch(patch: dict) -> None:
    """
    Business rules for lot records that are not captured by SQLAlchemy metadata alone.
    """
    if "quantity" in patch and patch["quantity"] is not None:
        qty = patch["quantity"]
        if qty < 0:
            raise ValidationError("quantity must be >= 0")
        if qty > MAX_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")

    for field in ("supplier_cost_per_vial", "testing_cost"):
        cost = patch.get(field)
        if cost is None:
            continue
        if cost < 0:
            raise ValidationError(f"{field} must be >= 0")
        if cost > MAX_COST:
            raise ValidationError(f"{field} cannot exceed {MAX_COST}")


def enforce_rules_allocation(patch: dict) -> None:
    # Manual allocations default to a single unit
    if patch.get("quantity") is None:
        patch["quantity"] = 1
    if patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0")
    if patch["quantity"] > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")
