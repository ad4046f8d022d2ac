from __future__ import annotations

from ..extensions import db
from phonestock.time_utils import to_utc_z, to_iso_date


class PurchaseInvoice(db.Model):
    """
    Supplier purchase invoice: the only way phone units enter stock.

    LIFECYCLE:
    1. DRAFT: Created with its units; proof of purchase may be attached
    2. VERIFIED: Proof checked; permanent from here on
    3. COMPLETED: Reserved for fully settled invoices
    4. CANCELLED: Soft-cancelled while still Draft and untouched

    COMPOSITION: The invoice exclusively owns its units (cascade delete-orphan).
    A unit never moves to another invoice.

    DERIVED FINANCIALS: subtotal, totals and pending payment are recomputed
    from the current unit set on every persist (invoice_service.recalculate_financials).
    Only tax, discount, shipping and paid amounts are caller inputs.
    """
    __tablename__ = "purchase_invoices"
    __table_args__ = (
        db.Index("ix_purchase_invoices_date", "invoice_date"),
        db.Index("ix_purchase_invoices_supplier", "supplier_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Normalized (trimmed, uppercase) so uniqueness is case-insensitive
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)
    invoice_date = db.Column(db.Date, nullable=False)
    invoice_time = db.Column(db.String(5), nullable=True)  # HH:MM

    # Supplier
    supplier_name = db.Column(db.String(255), nullable=False)
    supplier_contact_person = db.Column(db.String(255), nullable=True)
    supplier_phone = db.Column(db.String(32), nullable=True)
    supplier_email = db.Column(db.String(255), nullable=True)
    supplier_address = db.Column(db.Text, nullable=True)

    # Proof of purchase (object storage reference). Optional on create,
    # required for verification.
    proof_key = db.Column(db.String(512), nullable=True)
    proof_url = db.Column(db.String(1024), nullable=True)
    proof_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Financial summary in cents (derived except tax/discount/shipping inputs)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_selling_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment terms
    payment_method = db.Column(db.String(16), nullable=False, default="CASH")
    payment_status = db.Column(db.String(16), nullable=False, default="PAID")
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_date = db.Column(db.Date, nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)

    # DRAFT, VERIFIED, COMPLETED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    notes = db.Column(db.Text, nullable=True)

    # Audit
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    units = db.relationship(
        "PhoneUnit",
        back_populates="invoice",
        order_by="PhoneUnit.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    verified_by = db.relationship("User", foreign_keys=[verified_by_user_id])

    @property
    def has_proof(self) -> bool:
        return bool(self.proof_url)

    @property
    def total_units(self) -> int:
        return len(self.units)

    @property
    def available_units(self) -> int:
        return sum(1 for u in self.units if u.status == "AVAILABLE")

    @property
    def sold_units(self) -> int:
        return sum(1 for u in self.units if u.status == "SOLD")

    @property
    def expected_profit_cents(self) -> int:
        return (self.total_selling_cents or 0) - (self.total_cost_cents or 0)

    def __repr__(self) -> str:
        return f"<PurchaseInvoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_date": to_iso_date(self.invoice_date),
            "supplier_name": self.supplier_name,
            "total_units": self.total_units,
            "available_units": self.available_units,
            "sold_units": self.sold_units,
            "total_cost_cents": self.total_cost_cents,
            "total_selling_cents": self.total_selling_cents,
            "expected_profit_cents": self.expected_profit_cents,
            "status": self.status,
            "payment_status": self.payment_status,
        }

    def to_dict(self, include_units: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_date": to_iso_date(self.invoice_date),
            "invoice_time": self.invoice_time,
            "supplier": {
                "name": self.supplier_name,
                "contact_person": self.supplier_contact_person,
                "phone": self.supplier_phone,
                "email": self.supplier_email,
                "address": self.supplier_address,
            },
            "proof": {
                "key": self.proof_key,
                "url": self.proof_url,
                "uploaded_at": to_utc_z(self.proof_uploaded_at),
            } if self.proof_url else None,
            "financials": {
                "subtotal_cents": self.subtotal_cents,
                "tax_cents": self.tax_cents,
                "tax_rate_bps": self.tax_rate_bps,
                "discount_cents": self.discount_cents,
                "discount_rate_bps": self.discount_rate_bps,
                "shipping_cents": self.shipping_cents,
                "total_cost_cents": self.total_cost_cents,
                "total_selling_cents": self.total_selling_cents,
                "expected_profit_cents": self.expected_profit_cents,
            },
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "paid_cents": self.paid_cents,
                "pending_cents": self.pending_cents,
                "payment_date": to_iso_date(self.payment_date),
                "reference": self.payment_reference,
            },
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "verified_by_user_id": self.verified_by_user_id,
            "verified_at": to_utc_z(self.verified_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_units:
            data["units"] = [u.to_dict() for u in self.units]
        return data


class PhoneUnit(db.Model):
    """
    One physical handset, identified by IMEI.

    UNIQUENESS: imei is unique across the whole table, which is the entire
    ledger. The unique index is the source of truth; service pre-checks only
    exist to produce a friendlier error naming the IMEI.

    STATUS: AVAILABLE, RESERVED, ASSIGNED, SOLD, RETURNED, DAMAGED, TRANSIT.
    Status only changes through ledger_service.transition, which is a
    compare-and-set UPDATE keyed on the current status.

    DELETION: Only AVAILABLE units may be deleted (correction of intake errors).
    """
    __tablename__ = "phone_units"
    __table_args__ = (
        db.Index("ix_phone_units_invoice_position", "invoice_id", "position"),
        db.Index("ix_phone_units_product_status", "product_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    imei = db.Column(db.String(15), nullable=False, unique=True)
    serial_number = db.Column(db.String(64), nullable=True)

    cost_price_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    # NEW, REFURBISHED, OPEN_BOX, LIKE_NEW
    condition = db.Column(db.String(16), nullable=False, default="NEW")

    status = db.Column(db.String(16), nullable=False, default="AVAILABLE", index=True)

    warranty_expiry_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Sale outcome
    sold_price_cents = db.Column(db.Integer, nullable=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sold_to = db.Column(db.String(255), nullable=True)

    # Last return
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    invoice = db.relationship("PurchaseInvoice", back_populates="units")
    product = db.relationship("Product", lazy="joined")

    @property
    def expected_profit_cents(self) -> int:
        return self.selling_price_cents - self.cost_price_cents

    def __repr__(self) -> str:
        return f"<PhoneUnit imei={self.imei} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product": self.product.display_name if self.product else None,
            "imei": self.imei,
            "serial_number": self.serial_number,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "expected_profit_cents": self.expected_profit_cents,
            "condition": self.condition,
            "status": self.status,
            "warranty_expiry_date": to_iso_date(self.warranty_expiry_date),
            "notes": self.notes,
            "sold_price_cents": self.sold_price_cents,
            "sold_at": to_utc_z(self.sold_at),
            "sold_to": self.sold_to,
            "returned_at": to_utc_z(self.returned_at),
            "return_notes": self.return_notes,
            "created_at": to_utc_z(self.created_at),
        }
