from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from kasa.time_utils import parse_iso_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# Keeps sums of a day's movements well inside a 32-bit column
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


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


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for amounts and quantities.

    Rejects floats, booleans, decimal strings and scientific notation so that
    "12.5" never silently becomes 12 cents.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    """Coerce a money amount in cents and apply range checks."""
    if value is None:
        raise ValidationError(f"{field} is required")
    cents = coerce_int(value, field)
    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
    raise ValidationError(f"{field} must be a datetime")


def _coerce_column(col, value: Any):
    """Normalize one client value according to its column type."""
    key, coltype = col.key, col.type

    if isinstance(coltype, Integer):
        # Money columns get the cents range checks, other integers stay plain
        return coerce_cents(value, key) if key.endswith("_cents") else coerce_int(value, key)

    if isinstance(coltype, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{key} must be true or false")
        return value

    if isinstance(coltype, DateTime):
        moment = coerce_datetime(value, key)
        if moment is None:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return moment

    if isinstance(coltype, (String, Text)):
        text = str(value).strip()
        if not text and not col.nullable:
            raise ValidationError(f"{key} cannot be blank")
        limit = getattr(coltype, "length", None)
        if limit and len(text) > limit:
            raise ValidationError(f"{key} exceeds max length {limit}")
        return text

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a create (partial=False) or update (partial=True) body for a model.

    Keys must be in the policy's writable set and be real columns; values
    are coerced by column type. Ledger-owned columns such as a customer's
    current debt are simply never writable.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    rejected = sorted(k for k in payload if k not in policy.writable_fields)
    if rejected:
        raise ValidationError(f"Field not allowed: {', '.join(rejected)}")

    if not partial:
        missing = sorted((policy.required_on_create or set()) - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = _columns_by_key(model)
    patch: dict = {}
    for key, raw in payload.items():
        col = columns.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _coerce_column(col, raw)
    return patch


PHONE_ALLOWED = set("0123456789+-() ")


def enforce_rules_customer(patch: dict) -> None:
    """Customer rules the column metadata cannot express."""
    phone = patch.get("phone")
    if phone and not set(phone) <= PHONE_ALLOWED:
        raise ValidationError("phone may only contain digits, spaces and + - ( )")

    tax_number = patch.get("tax_number")
    if tax_number and not (tax_number.isdigit() and len(tax_number) in (10, 11)):
        raise ValidationError("tax_number must be 10 (company) or 11 (personal) digits")
