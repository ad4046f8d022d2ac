# Overview: Service-layer operations for purchase invoices; encapsulates business logic.

"""
Invoice Intake & Verification Service

WHY: Phone units only enter stock through a supplier purchase invoice. The
invoice is the audit anchor for cost, supplier and proof of purchase.

LIFECYCLE:
1. DRAFT: Created with its units; editable while every unit is still Available
2. VERIFIED: Proof of purchase attached and checked; permanent from here on
3. CANCELLED: Soft-cancelled while Draft and untouched

IMMUTABLE: Once VERIFIED, the header and unit list cannot be modified.

DESIGN:
- invoice_number is normalized (trimmed, uppercase); the unique index makes
  it case-insensitively unique
- Financials are derived from the unit set on every persist; tax, discount,
  shipping and paid amounts are the only monetary inputs
- Verification and cancellation are conditional updates, so they cannot
  interleave with a concurrent assignment of the invoice's units
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import delete, exists, select

from ..extensions import db
from ..models import PurchaseInvoice, PhoneUnit
from ..errors import (
    ConflictError,
    ImmutableInvoiceError,
    NotFoundError,
    PhoneStockError,
    ValidationError,
    VerificationPreconditionError,
)
from ..validation import ModelValidationPolicy, validate_date, validate_payload, validate_money
from ..time_utils import business_today, utcnow
from .concurrency import commit_or_conflict, compare_and_set, flush_or_conflict
from . import ledger_service, storage_service


STATUS_DRAFT = "DRAFT"
STATUS_VERIFIED = "VERIFIED"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"
INVOICE_STATUSES = (STATUS_DRAFT, STATUS_VERIFIED, STATUS_COMPLETED, STATUS_CANCELLED)

PAYMENT_METHODS = ("CASH", "BANK_TRANSFER", "CHEQUE", "CREDIT", "MIXED")
PAYMENT_STATUSES = ("PAID", "PARTIAL", "PENDING", "OVERDUE")

HEADER_POLICY = ModelValidationPolicy(
    writable_fields={
        "invoice_number", "invoice_date", "invoice_time",
        "supplier_name", "supplier_contact_person", "supplier_phone",
        "supplier_email", "supplier_address",
        "tax_cents", "tax_rate_bps", "discount_cents", "discount_rate_bps",
        "shipping_cents",
        "payment_method", "payment_status", "paid_cents",
        "payment_date", "payment_reference",
        "notes",
    },
    required_on_create={"invoice_number", "supplier_name"},
)

HEADER_MONEY_FIELDS = ("tax_cents", "discount_cents", "shipping_cents", "paid_cents")


def normalize_invoice_number(value) -> str:
    number = str(value or "").strip().upper()
    if not number:
        raise ValidationError("invoice_number is required")
    return number


def recalculate_financials(invoice: PurchaseInvoice) -> PurchaseInvoice:
    """
    Pure recompute of the derived financial fields from the current units.

    total_cost = subtotal + tax - discount + shipping
    pending = total_cost - paid
    """
    units = list(invoice.units)
    invoice.subtotal_cents = sum(u.cost_price_cents for u in units)
    invoice.total_selling_cents = sum(u.selling_price_cents for u in units)
    invoice.total_cost_cents = (
        invoice.subtotal_cents
        + (invoice.tax_cents or 0)
        - (invoice.discount_cents or 0)
        + (invoice.shipping_cents or 0)
    )
    invoice.pending_cents = invoice.total_cost_cents - (invoice.paid_cents or 0)
    return invoice


def _clean_header(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=PurchaseInvoice, payload=payload, policy=HEADER_POLICY, partial=partial)

    if "invoice_number" in patch:
        patch["invoice_number"] = normalize_invoice_number(patch["invoice_number"])
    for field in HEADER_MONEY_FIELDS:
        if field in patch:
            patch[field] = validate_money(patch[field], field)
    for field in ("tax_rate_bps", "discount_rate_bps"):
        if field in patch and patch[field] is not None and not 0 <= patch[field] <= 10_000:
            raise ValidationError(f"{field} must be between 0 and 10000", field=field)
    if "payment_method" in patch:
        patch["payment_method"] = (patch["payment_method"] or "").upper()
        if patch["payment_method"] not in PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment_method: {patch['payment_method']}")
    if "payment_status" in patch:
        patch["payment_status"] = (patch["payment_status"] or "").upper()
        if patch["payment_status"] not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment_status: {patch['payment_status']}")
    if patch.get("invoice_time"):
        try:
            datetime.strptime(patch["invoice_time"], "%H:%M")
        except ValueError:
            raise ValidationError("invoice_time must be HH:MM")
    return patch


def _ensure_number_free(invoice_number: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(PurchaseInvoice.id).filter(PurchaseInvoice.invoice_number == invoice_number)
    if exclude_id is not None:
        query = query.filter(PurchaseInvoice.id != exclude_id)
    if query.first():
        raise ConflictError(
            f"Invoice number {invoice_number} already exists",
            invoice_number=invoice_number,
        )


def get_invoice(invoice_id: int) -> PurchaseInvoice:
    invoice = db.session.get(PurchaseInvoice, invoice_id)
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
    return invoice


def get_invoice_by_number(invoice_number: str) -> PurchaseInvoice:
    number = normalize_invoice_number(invoice_number)
    invoice = db.session.query(PurchaseInvoice).filter_by(invoice_number=number).first()
    if not invoice:
        raise NotFoundError(f"Invoice {number} not found", invoice_number=number)
    return invoice


def create_invoice(*, data: dict, created_by_user_id: int) -> PurchaseInvoice:
    """
    Create a Draft invoice together with its units.

    Args:
        data: header fields plus "units": [{imei, product_id, cost_price_cents,
            selling_price_cents, condition?, serial_number?, warranty_expiry_date?, notes?}]
        created_by_user_id: staff member recording the invoice

    Raises:
        ValidationError: malformed header/unit data or no units
        ConflictError: invoice number or any IMEI already exists (names it)
    """
    data = dict(data or {})
    units = data.pop("units", None)
    if not units:
        raise ValidationError("At least one phone unit is required")

    header = _clean_header(data, partial=False)
    if header.get("invoice_date") is None:
        header["invoice_date"] = business_today()
    _ensure_number_free(header["invoice_number"])

    invoice = PurchaseInvoice(status=STATUS_DRAFT, created_by_user_id=created_by_user_id, **header)
    db.session.add(invoice)
    flush_or_conflict(
        f"Invoice number {header['invoice_number']} already exists",
        invoice_number=header["invoice_number"],
    )

    try:
        ledger_service.register_units(invoice, units)
    except PhoneStockError:
        db.session.rollback()
        raise
    recalculate_financials(invoice)
    commit_or_conflict(
        "Invoice number or IMEI already exists",
        invoice_number=header["invoice_number"],
    )

    current_app.logger.info(
        "Invoice created: %s with %s units (total cost %s)",
        invoice.invoice_number,
        invoice.total_units,
        invoice.total_cost_cents,
    )
    return invoice


def _require_draft(invoice: PurchaseInvoice, action: str) -> None:
    if invoice.status != STATUS_DRAFT:
        raise ImmutableInvoiceError(
            f"Cannot {action} invoice with status {invoice.status}",
            invoice_number=invoice.invoice_number,
            status=invoice.status,
        )


def attach_proof(
    invoice_id: int,
    *,
    proof_key: str,
    proof_url: str,
    updated_by_user_id: int | None = None,
    now: datetime | None = None,
) -> PurchaseInvoice:
    """Record a stored proof-of-purchase reference. Overwrites any earlier proof."""
    if not proof_url:
        raise ValidationError("proof_url is required", invoice_id=invoice_id)

    invoice = get_invoice(invoice_id)
    _require_draft(invoice, "attach proof to")

    invoice.proof_key = proof_key
    invoice.proof_url = proof_url
    invoice.proof_uploaded_at = now or utcnow()
    invoice.updated_by_user_id = updated_by_user_id
    db.session.commit()

    current_app.logger.info("Proof attached to invoice %s", invoice.invoice_number)
    return invoice


def upload_proof(
    invoice_id: int,
    *,
    data: bytes,
    filename: str,
    mime_type: str,
    updated_by_user_id: int | None = None,
) -> PurchaseInvoice:
    """Store the proof file through the object storage collaborator, then attach it."""
    invoice = get_invoice(invoice_id)
    _require_draft(invoice, "attach proof to")

    stored = storage_service.save_object(
        data,
        filename=filename,
        mime_type=mime_type,
        folder=f"invoices/{invoice.invoice_number}",
    )
    return attach_proof(
        invoice.id,
        proof_key=stored.key,
        proof_url=stored.url,
        updated_by_user_id=updated_by_user_id,
    )


def verify_invoice(
    invoice_id: int,
    *,
    verified_by_user_id: int,
    now: datetime | None = None,
) -> PurchaseInvoice:
    """
    DRAFT -> VERIFIED. Requires proof of purchase.

    Raises VerificationPreconditionError when the invoice is not Draft or has
    no proof attached.
    """
    invoice = get_invoice(invoice_id)
    changed = compare_and_set(
        PurchaseInvoice,
        where={"id": invoice.id, "status": STATUS_DRAFT},
        values={
            "status": STATUS_VERIFIED,
            "verified_by_user_id": verified_by_user_id,
            "verified_at": now or utcnow(),
        },
        extra_criteria=(PurchaseInvoice.proof_url.isnot(None),),
    )
    if not changed:
        db.session.rollback()
        invoice = get_invoice(invoice_id)
        if invoice.status != STATUS_DRAFT:
            message = f"Invoice is already {invoice.status}"
        else:
            message = "Please upload invoice proof before verification"
        raise VerificationPreconditionError(
            message,
            invoice_number=invoice.invoice_number,
            status=invoice.status,
            has_proof=invoice.has_proof,
        )

    db.session.commit()
    current_app.logger.info("Invoice verified: %s", invoice.invoice_number)
    return invoice


def _has_touched_units(invoice: PurchaseInvoice) -> bool:
    return any(u.status != ledger_service.AVAILABLE for u in invoice.units)


def _untouched_criteria():
    """SQL criterion: no unit of the invoice has left Available."""
    touched = exists().where(
        PhoneUnit.invoice_id == PurchaseInvoice.id,
        PhoneUnit.status != ledger_service.AVAILABLE,
    )
    return ~touched


def _raise_immutable(invoice_id: int, action: str) -> None:
    db.session.rollback()
    invoice = get_invoice(invoice_id)
    _require_draft(invoice, action)
    raise ImmutableInvoiceError(
        f"Cannot {action} invoice. Some phones have been assigned, sold or moved.",
        invoice_number=invoice.invoice_number,
    )


def edit_invoice(
    invoice_id: int,
    *,
    patch: dict,
    updated_by_user_id: int | None = None,
) -> PurchaseInvoice:
    """
    Edit a Draft invoice whose units are all still Available.

    `patch` may hold header fields and optionally "units", a complete
    replacement unit list. IMEI uniqueness checks ignore the invoice's own
    current units.

    The Draft/untouched gate is a conditional UPDATE on the invoice row that
    holds through the commit.
    """
    invoice = get_invoice(invoice_id)
    _require_draft(invoice, "edit")
    if _has_touched_units(invoice):
        _raise_immutable(invoice.id, "edit")

    patch = dict(patch or {})
    units = patch.pop("units", None)
    header = _clean_header(patch, partial=True)
    if "supplier_name" in header and not header["supplier_name"]:
        raise ValidationError("supplier_name cannot be blank")
    if units is not None and not units:
        raise ValidationError("At least one phone unit is required", invoice_number=invoice.invoice_number)

    claimed = compare_and_set(
        PurchaseInvoice,
        where={"id": invoice.id, "status": STATUS_DRAFT},
        values={"updated_by_user_id": updated_by_user_id},
        extra_criteria=(_untouched_criteria(),),
    )
    if not claimed:
        _raise_immutable(invoice_id, "edit")

    if header.get("invoice_number") and header["invoice_number"] != invoice.invoice_number:
        try:
            _ensure_number_free(header["invoice_number"], exclude_id=invoice.id)
        except ConflictError:
            db.session.rollback()
            raise

    for key, value in header.items():
        setattr(invoice, key, value)

    if units is not None:
        expected = len(invoice.units)
        result = db.session.execute(
            delete(PhoneUnit)
            .where(PhoneUnit.invoice_id == invoice.id, PhoneUnit.status == ledger_service.AVAILABLE)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != expected:
            db.session.rollback()
            raise ImmutableInvoiceError(
                "Cannot edit invoice. Some phones have been assigned, sold or moved.",
                invoice_number=invoice.invoice_number,
            )
        db.session.expire(invoice, ["units"])
        try:
            ledger_service.register_units(invoice, units, exclude_invoice_id=invoice.id)
        except PhoneStockError:
            db.session.rollback()
            raise

    recalculate_financials(invoice)
    commit_or_conflict("Invoice number or IMEI already exists", invoice_number=invoice.invoice_number)

    current_app.logger.info("Invoice updated: %s", invoice.invoice_number)
    return invoice


def cancel_invoice(
    invoice_id: int,
    *,
    cancelled_by_user_id: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> PurchaseInvoice:
    """
    Soft-cancel a Draft invoice whose units are all still Available.

    The units stay in the ledger as Available but are excluded from stock
    and cannot be assigned.
    """
    invoice = get_invoice(invoice_id)
    values = {
        "status": STATUS_CANCELLED,
        "cancelled_at": now or utcnow(),
        "updated_by_user_id": cancelled_by_user_id,
    }
    if reason:
        values["notes"] = f"{invoice.notes}\nCancelled: {reason}" if invoice.notes else f"Cancelled: {reason}"

    changed = compare_and_set(
        PurchaseInvoice,
        where={"id": invoice.id, "status": STATUS_DRAFT},
        values=values,
        extra_criteria=(_untouched_criteria(),),
    )
    if not changed:
        _raise_immutable(invoice_id, "cancel")

    db.session.commit()
    current_app.logger.info("Invoice cancelled: %s", invoice.invoice_number)
    return invoice


def list_invoices(
    *,
    status: str | None = None,
    supplier: str | None = None,
    start_date=None,
    end_date=None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    query = db.session.query(PurchaseInvoice)
    if status:
        query = query.filter(PurchaseInvoice.status == status.upper())
    if supplier:
        query = query.filter(PurchaseInvoice.supplier_name.ilike(f"%{supplier.strip()}%"))
    start = validate_date(start_date, "start_date")
    end = validate_date(end_date, "end_date")
    if start:
        query = query.filter(PurchaseInvoice.invoice_date >= start)
    if end:
        query = query.filter(PurchaseInvoice.invoice_date <= end)
    if search:
        like = f"%{search.strip()}%"
        imei_match = (
            select(PhoneUnit.invoice_id).where(PhoneUnit.imei.like(like)).scalar_subquery()
        )
        query = query.filter(
            db.or_(
                PurchaseInvoice.invoice_number.ilike(like),
                PurchaseInvoice.supplier_name.ilike(like),
                PurchaseInvoice.id.in_(imei_match),
            )
        )

    total = query.count()
    limit = max(1, min(limit or 50, 200))
    items = (
        query.order_by(PurchaseInvoice.invoice_date.desc(), PurchaseInvoice.id.desc())
        .offset(max(offset or 0, 0))
        .limit(limit)
        .all()
    )
    return {"items": items, "total": total, "limit": limit, "offset": offset}


def invoice_summary() -> dict:
    """Counts and totals across non-cancelled invoices."""
    invoices = (
        db.session.query(PurchaseInvoice)
        .filter(PurchaseInvoice.status != STATUS_CANCELLED)
        .all()
    )
    by_status: dict[str, int] = {}
    for inv in invoices:
        by_status[inv.status] = by_status.get(inv.status, 0) + 1
    return {
        "invoices": len(invoices),
        "by_status": by_status,
        "total_units": sum(inv.total_units for inv in invoices),
        "available_units": sum(inv.available_units for inv in invoices),
        "sold_units": sum(inv.sold_units for inv in invoices),
        "total_cost_cents": sum(inv.total_cost_cents for inv in invoices),
        "total_selling_cents": sum(inv.total_selling_cents for inv in invoices),
        "expected_profit_cents": sum(inv.expected_profit_cents for inv in invoices),
        "pending_payment_cents": sum(inv.pending_cents for inv in invoices),
    }
