from __future__ import annotations

from ..extensions import db
from phonestock.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog reference: one handset model/variant.

    Invoice intake binds every phone unit to a product. The core reads products
    but never changes them as a side effect of stock movements.

    VERSIONING: version_id is an optimistic lock column. Concurrent catalog
    edits fail with StaleDataError instead of silently overwriting each other.

    SOFT DELETE: Products referenced by units are never removed; they are
    deactivated and flagged discontinued.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_brand_model_color", "brand", "model", "color"),
        db.Index("ix_products_active_discontinued", "is_active", "is_discontinued"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Stored uppercase
    brand = db.Column(db.String(64), nullable=False, index=True)
    model = db.Column(db.String(128), nullable=False, index=True)
    variant = db.Column(db.String(128), nullable=True)

    # Specifications
    storage = db.Column(db.String(32), nullable=False)
    ram = db.Column(db.String(32), nullable=False)
    color = db.Column(db.String(64), nullable=False)
    screen_size = db.Column(db.String(32), nullable=True)
    battery = db.Column(db.String(32), nullable=True)
    camera = db.Column(db.String(128), nullable=True)
    processor = db.Column(db.String(128), nullable=True)
    os = db.Column(db.String(64), nullable=True)
    sim_type = db.Column(db.String(32), nullable=True)
    connectivity = db.Column(db.JSON, nullable=True)

    # Reference pricing in cents
    cost_price_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)
    mrp_cents = db.Column(db.Integer, nullable=True)

    warranty_months = db.Column(db.Integer, nullable=False, default=12)
    warranty_type = db.Column(db.String(32), nullable=False, default="Manufacturer")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_discontinued = db.Column(db.Boolean, nullable=False, default=False)

    description = db.Column(db.Text, nullable=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    barcode = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def full_name(self) -> str:
        parts = [self.brand, self.model]
        if self.variant:
            parts.append(self.variant)
        return " ".join(parts)

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model} {self.storage} {self.color}"

    def __repr__(self) -> str:
        return f"<Product id={self.id} {self.display_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "brand": self.brand,
            "model": self.model,
            "variant": self.variant,
            "full_name": self.full_name,
            "display_name": self.display_name,
            "specifications": {
                "storage": self.storage,
                "ram": self.ram,
                "color": self.color,
                "screen_size": self.screen_size,
                "battery": self.battery,
                "camera": self.camera,
                "processor": self.processor,
                "os": self.os,
                "sim_type": self.sim_type,
                "connectivity": self.connectivity or [],
            },
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "mrp_cents": self.mrp_cents,
            "warranty_months": self.warranty_months,
            "warranty_type": self.warranty_type,
            "is_active": self.is_active,
            "is_discontinued": self.is_discontinued,
            "description": self.description,
            "sku": self.sku,
            "barcode": self.barcode,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
