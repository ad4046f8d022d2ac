from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from phonestock.errors import ValidationError
from phonestock.time_utils import parse_iso_datetime, parse_iso_date


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

IMEI_PATTERN = re.compile(r"^\d{15}$")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for create
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers: reject floats, decimals and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be a plain integer", field=col.key)
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer", field=col.key)
        raise ValidationError(f"{col.key} must be an integer", field=col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        try:
            dt = parse_iso_datetime(str(value))
        except ValueError:
            dt = None
        if dt is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
        return dt

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        try:
            return parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{col.key} must be a YYYY-MM-DD date", field=col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming data against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError(f"Field not allowed: {k}", field=k)

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise ValidationError(f"{k} cannot be blank", field=k)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def validate_money(value, field: str, *, required: bool = True) -> int | None:
    """Non-negative integer cents within MAX_PRICE_CENTS."""
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be integer cents", field=field)
    if value < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}", field=field)
    return value


def validate_date(value, field: str) -> date | None:
    """Optional YYYY-MM-DD input; malformed values are a ValidationError."""
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", field=field)


def normalize_imei(value) -> str:
    """Strip whitespace and require exactly 15 digits."""
    imei = str(value or "").strip()
    if not IMEI_PATTERN.match(imei):
        raise ValidationError(f"Invalid IMEI: {imei!r} (must be exactly 15 digits)", imei=imei)
    return imei


def enforce_rules_product(patch: dict) -> None:
    """Product rules not captured by column metadata."""
    for field in ("cost_price_cents", "selling_price_cents", "mrp_cents"):
        if field in patch:
            validate_money(patch[field], field, required=field != "mrp_cents")
    if "warranty_months" in patch and patch["warranty_months"] is not None:
        if patch["warranty_months"] < 0:
            raise ValidationError("warranty_months must be >= 0", field="warranty_months")
    if "brand" in patch and patch["brand"]:
        patch["brand"] = patch["brand"].upper()
