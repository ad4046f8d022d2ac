# Overview: Service-layer operations for the phone catalog; encapsulates business logic.

"""
Catalog Service

The catalog is reference data. Invoice intake binds units to products; stock
movements never modify a product.

SOFT DELETE: deactivate_product marks a product inactive and discontinued.
Products are never removed because units reference them.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product
from ..errors import NotFoundError, ValidationError
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_product
from .concurrency import commit_or_conflict


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "brand", "model", "variant",
        "storage", "ram", "color", "screen_size", "battery", "camera",
        "processor", "os", "sim_type", "connectivity",
        "cost_price_cents", "selling_price_cents", "mrp_cents",
        "warranty_months", "warranty_type",
        "is_active", "is_discontinued",
        "description", "sku", "barcode",
    },
    required_on_create={
        "brand", "model", "storage", "ram", "color",
        "cost_price_cents", "selling_price_cents",
    },
)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
    return product


def get_assignable_product(product_id: int) -> Product:
    """Product a new unit may be bound to: must exist and be active."""
    product = get_product(product_id)
    if not product.is_active:
        raise ValidationError("Product is not active", product_id=product_id)
    return product


def create_product(*, payload: dict, created_by_user_id: int | None = None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    product = Product(**patch)
    product.created_by_user_id = created_by_user_id
    db.session.add(product)
    commit_or_conflict("SKU already exists", sku=patch.get("sku"))

    current_app.logger.info("Product created: %s (id=%s)", product.display_name, product.id)
    return product


def update_product(product_id: int, *, payload: dict, updated_by_user_id: int | None = None) -> Product:
    product = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    for key, value in patch.items():
        setattr(product, key, value)
    product.updated_by_user_id = updated_by_user_id
    commit_or_conflict("SKU already exists", sku=patch.get("sku"))
    return product


def deactivate_product(product_id: int, *, updated_by_user_id: int | None = None) -> Product:
    product = get_product(product_id)
    product.is_active = False
    product.is_discontinued = True
    product.updated_by_user_id = updated_by_user_id
    db.session.commit()

    current_app.logger.info("Product deactivated: id=%s", product.id)
    return product


def list_products(
    *,
    brand: str | None = None,
    search: str | None = None,
    active: bool | None = True,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    query = db.session.query(Product)
    if active is not None:
        query = query.filter(Product.is_active.is_(active))
    if brand:
        query = query.filter(Product.brand == brand.strip().upper())
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            db.or_(
                Product.brand.ilike(like),
                Product.model.ilike(like),
                Product.variant.ilike(like),
                Product.sku.ilike(like),
            )
        )

    total = query.count()
    limit = max(1, min(limit or 50, 200))
    items = (
        query.order_by(Product.brand.asc(), Product.model.asc(), Product.id.asc())
        .offset(max(offset or 0, 0))
        .limit(limit)
        .all()
    )
    return {"items": items, "total": total, "limit": limit, "offset": offset}
