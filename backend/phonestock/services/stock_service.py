# Overview: Read-only stock queries used by reports and exports.

"""
Stock Queries

Availability means: unit status AVAILABLE and the owning invoice not
CANCELLED. Nothing here writes.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import PhoneUnit, Product, PurchaseInvoice
from ..errors import ValidationError
from . import ledger_service


def _available_query():
    return (
        db.session.query(PhoneUnit)
        .join(PurchaseInvoice, PurchaseInvoice.id == PhoneUnit.invoice_id)
        .join(Product, Product.id == PhoneUnit.product_id)
        .filter(
            PhoneUnit.status == ledger_service.AVAILABLE,
            PurchaseInvoice.status != "CANCELLED",
        )
    )


def _unit_row(unit: PhoneUnit) -> dict:
    return {
        "imei": unit.imei,
        "cost_price_cents": unit.cost_price_cents,
        "selling_price_cents": unit.selling_price_cents,
        "condition": unit.condition,
        "warranty_expiry_date": unit.warranty_expiry_date.isoformat() if unit.warranty_expiry_date else None,
        "invoice_id": unit.invoice_id,
        "invoice_number": unit.invoice.invoice_number,
    }


def available_stock() -> list[dict]:
    """Available units grouped by product, with per-unit rows."""
    units = (
        _available_query()
        .order_by(Product.brand.asc(), Product.model.asc(), PhoneUnit.id.asc())
        .all()
    )
    groups: dict[int, dict] = {}
    for unit in units:
        group = groups.get(unit.product_id)
        if group is None:
            group = groups[unit.product_id] = {
                "product": unit.product.to_dict(),
                "count": 0,
                "total_cost_cents": 0,
                "total_selling_cents": 0,
                "units": [],
            }
        group["count"] += 1
        group["total_cost_cents"] += unit.cost_price_cents
        group["total_selling_cents"] += unit.selling_price_cents
        group["units"].append(_unit_row(unit))
    return list(groups.values())


def available_stock_detailed() -> list[dict]:
    """One flat row per available unit, newest first."""
    units = _available_query().order_by(PhoneUnit.created_at.desc(), PhoneUnit.id.desc()).all()
    rows = []
    for unit in units:
        row = _unit_row(unit)
        row["product"] = {
            "id": unit.product.id,
            "brand": unit.product.brand,
            "model": unit.product.model,
            "variant": unit.product.variant,
            "storage": unit.product.storage,
            "ram": unit.product.ram,
            "color": unit.product.color,
        }
        rows.append(row)
    return rows


def statistics() -> dict:
    """Count, cost and selling totals per unit status (cancelled invoices excluded)."""
    rows = (
        db.session.query(
            PhoneUnit.status,
            func.count(PhoneUnit.id),
            func.coalesce(func.sum(PhoneUnit.cost_price_cents), 0),
            func.coalesce(func.sum(PhoneUnit.selling_price_cents), 0),
        )
        .join(PurchaseInvoice, PurchaseInvoice.id == PhoneUnit.invoice_id)
        .filter(PurchaseInvoice.status != "CANCELLED")
        .group_by(PhoneUnit.status)
        .all()
    )
    by_status = {
        status: {"count": count, "total_cost_cents": int(cost), "total_selling_cents": int(selling)}
        for status, count, cost, selling in rows
    }
    return {
        "by_status": by_status,
        "total_units": sum(v["count"] for v in by_status.values()),
    }


def low_stock(threshold: int | None = None) -> list[dict]:
    """Active products whose available count is at or below the threshold (zero included)."""
    if threshold is None:
        threshold = current_app.config["LOW_STOCK_THRESHOLD"]
    if threshold < 0:
        raise ValidationError("threshold must be >= 0")

    counts = dict(
        _available_query()
        .with_entities(PhoneUnit.product_id, func.count(PhoneUnit.id))
        .group_by(PhoneUnit.product_id)
        .all()
    )
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.brand.asc(), Product.model.asc())
        .all()
    )
    return [
        {"product": p.to_dict(), "available": counts.get(p.id, 0)}
        for p in products
        if counts.get(p.id, 0) <= threshold
    ]


def list_units(
    *,
    status: str | None = None,
    condition: str | None = None,
    brand: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    query = (
        db.session.query(PhoneUnit)
        .join(Product, Product.id == PhoneUnit.product_id)
    )
    if status:
        query = query.filter(PhoneUnit.status == status.upper())
    if condition:
        query = query.filter(PhoneUnit.condition == condition.upper())
    if brand:
        query = query.filter(Product.brand == brand.strip().upper())
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            db.or_(
                PhoneUnit.imei.like(like),
                Product.model.ilike(like),
                PhoneUnit.serial_number.ilike(like),
            )
        )

    total = query.count()
    limit = max(1, min(limit or 50, 200))
    items = (
        query.order_by(PhoneUnit.created_at.desc(), PhoneUnit.id.desc())
        .offset(max(offset or 0, 0))
        .limit(limit)
        .all()
    )
    return {"items": items, "total": total, "limit": limit, "offset": offset}
