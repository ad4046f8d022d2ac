# Overview: Service-layer operations for the phone unit ledger; encapsulates business logic and database work.

"""
Phone Unit Ledger Invariants (authoritative)

- An IMEI identifies at most one unit across the whole ledger (unique index).
- A unit's status only changes through transition(), a single conditional
  UPDATE keyed on the expected current status. Two callers racing on the same
  unit cannot both succeed.
- Legal transitions:
    AVAILABLE -> ASSIGNED | RESERVED | DAMAGED | TRANSIT
    ASSIGNED  -> SOLD | RETURNED
    RETURNED  -> AVAILABLE
    RESERVED | DAMAGED | TRANSIT -> AVAILABLE
  SOLD is terminal.
- The owning invoice's financials are recomputed in the same transaction as
  every unit mutation.
- transition() and register_units() never commit; the calling operation owns
  the transaction.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import delete, select

from ..extensions import db
from ..models import PhoneUnit, PurchaseInvoice, DsrAssignmentUnit, DsrAssignment
from ..errors import (
    ConflictError,
    ImmutableInvoiceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..validation import normalize_imei, validate_money
from ..time_utils import add_months, parse_iso_date
from .concurrency import compare_and_set, flush_or_conflict
from . import catalog_service


AVAILABLE = "AVAILABLE"
RESERVED = "RESERVED"
ASSIGNED = "ASSIGNED"
SOLD = "SOLD"
RETURNED = "RETURNED"
DAMAGED = "DAMAGED"
TRANSIT = "TRANSIT"

UNIT_STATUSES = (AVAILABLE, RESERVED, ASSIGNED, SOLD, RETURNED, DAMAGED, TRANSIT)
HOLD_STATUSES = (RESERVED, DAMAGED, TRANSIT)

TRANSITIONS = {
    AVAILABLE: {ASSIGNED, RESERVED, DAMAGED, TRANSIT},
    ASSIGNED: {SOLD, RETURNED},
    RETURNED: {AVAILABLE},
    RESERVED: {AVAILABLE},
    DAMAGED: {AVAILABLE},
    TRANSIT: {AVAILABLE},
    SOLD: set(),
}

CONDITIONS = ("NEW", "REFURBISHED", "OPEN_BOX", "LIKE_NEW")

# Columns transition() may set alongside the status
TRANSITION_FIELDS = {"sold_price_cents", "sold_at", "sold_to", "returned_at", "return_notes"}

# Fields editable on an existing unit
UNIT_MUTABLE_FIELDS = {
    "serial_number", "condition", "warranty_expiry_date", "notes",
    "cost_price_cents", "selling_price_cents",
}
UNIT_PRICE_FIELDS = {"cost_price_cents", "selling_price_cents"}


def _recalculate(invoice: PurchaseInvoice) -> None:
    from .invoice_service import recalculate_financials
    recalculate_financials(invoice)


def _unit_query(imei: str):
    return db.session.query(PhoneUnit).filter(PhoneUnit.imei == imei)


def find_by_imei(imei: str) -> tuple[PhoneUnit, PurchaseInvoice]:
    """Return (unit, owning invoice) or raise NotFoundError."""
    imei = str(imei or "").strip()
    unit = _unit_query(imei).first()
    if not unit:
        raise NotFoundError(f"Phone with IMEI {imei} not found", imei=imei)
    return unit, unit.invoice


def imei_exists(imei: str, *, exclude_invoice_id: int | None = None) -> bool:
    query = _unit_query(imei)
    if exclude_invoice_id is not None:
        query = query.filter(PhoneUnit.invoice_id != exclude_invoice_id)
    return db.session.query(query.exists()).scalar()


def _build_unit(
    data: dict,
    *,
    position: int,
    invoice_date: date,
) -> PhoneUnit:
    if not isinstance(data, dict):
        raise ValidationError("Each unit must be an object")

    imei = normalize_imei(data.get("imei"))
    product_id = data.get("product_id")
    if product_id is None:
        raise ValidationError("product_id is required", imei=imei)
    product = catalog_service.get_assignable_product(product_id)

    condition = (data.get("condition") or "NEW").upper()
    if condition not in CONDITIONS:
        raise ValidationError(f"Invalid condition: {condition}", imei=imei)

    warranty = data.get("warranty_expiry_date")
    try:
        warranty = parse_iso_date(warranty)
    except ValueError:
        raise ValidationError("warranty_expiry_date must be a YYYY-MM-DD date", imei=imei)
    if warranty is None:
        warranty = add_months(invoice_date, product.warranty_months or 0)

    return PhoneUnit(
        position=position,
        product_id=product.id,
        imei=imei,
        serial_number=(data.get("serial_number") or None),
        cost_price_cents=validate_money(data.get("cost_price_cents"), "cost_price_cents"),
        selling_price_cents=validate_money(data.get("selling_price_cents"), "selling_price_cents"),
        condition=condition,
        status=AVAILABLE,
        warranty_expiry_date=warranty,
        notes=data.get("notes"),
    )


def register_units(
    invoice: PurchaseInvoice,
    units: list[dict],
    *,
    exclude_invoice_id: int | None = None,
) -> list[PhoneUnit]:
    """
    Build and attach new Available units to an invoice.

    Rejects malformed IMEIs, duplicates within the batch, and IMEIs already
    present in the ledger (ignoring `exclude_invoice_id`, used when an
    invoice replaces its own unit list). The duplicate check names the IMEI;
    the unique index still decides under concurrency.
    """
    if not units:
        raise ValidationError("At least one phone unit is required")

    built = [
        _build_unit(data, position=index, invoice_date=invoice.invoice_date)
        for index, data in enumerate(units)
    ]

    seen: set[str] = set()
    for unit in built:
        if unit.imei in seen:
            raise ConflictError(f"Duplicate IMEI in invoice: {unit.imei}", imei=unit.imei)
        seen.add(unit.imei)

    for unit in built:
        if imei_exists(unit.imei, exclude_invoice_id=exclude_invoice_id):
            raise ConflictError(f"IMEI {unit.imei} already exists in stock", imei=unit.imei)

    for unit in built:
        invoice.units.append(unit)

    flush_or_conflict(
        "One or more IMEIs already exist in stock",
        imeis=", ".join(u.imei for u in built),
    )
    _recalculate(invoice)
    return built


def transition(
    imei: str,
    from_expected: str,
    to: str,
    *,
    extra_criteria=(),
    **values,
) -> PhoneUnit:
    """
    Compare-and-set a unit's status from `from_expected` to `to`.

    Raises InvalidTransitionError if the pair is not legal or the unit is no
    longer in `from_expected` (naming the observed status), and NotFoundError
    if the IMEI does not exist. Recomputes the owning invoice's financials.
    """
    if to not in TRANSITIONS.get(from_expected, set()):
        raise InvalidTransitionError(
            f"Illegal status transition {from_expected} -> {to}",
            imei=imei,
            from_status=from_expected,
            to_status=to,
        )
    unknown = set(values) - TRANSITION_FIELDS
    if unknown:
        raise ValidationError(f"Cannot set {', '.join(sorted(unknown))} during a transition", imei=imei)

    changed = compare_and_set(
        PhoneUnit,
        where={"imei": imei, "status": from_expected},
        values={"status": to, **values},
        extra_criteria=extra_criteria,
    )
    if not changed:
        observed = db.session.execute(
            select(PhoneUnit.status).where(PhoneUnit.imei == imei)
        ).scalar()
        if observed is None:
            raise NotFoundError(f"Phone with IMEI {imei} not found", imei=imei)
        raise InvalidTransitionError(
            f"Phone {imei} is {observed}, expected {from_expected}",
            imei=imei,
            expected_status=from_expected,
            status=observed,
        )

    unit = _unit_query(imei).one()
    _recalculate(unit.invoice)
    return unit


def return_to_stock(imei: str, *, returned_at, return_notes: str | None = None) -> PhoneUnit:
    """ASSIGNED -> RETURNED -> AVAILABLE inside the caller's transaction."""
    transition(imei, ASSIGNED, RETURNED, returned_at=returned_at, return_notes=return_notes)
    return transition(imei, RETURNED, AVAILABLE)


def set_hold_status(imei: str, status: str, *, notes: str | None = None) -> PhoneUnit:
    """Put an Available unit on hold (RESERVED, DAMAGED, TRANSIT)."""
    status = (status or "").upper()
    if status not in HOLD_STATUSES:
        raise ValidationError(f"Invalid hold status: {status}", imei=imei)
    unit = transition(imei, AVAILABLE, status)
    if notes is not None:
        unit.notes = notes
    db.session.commit()
    current_app.logger.info("Unit %s placed on hold: %s", imei, status)
    return unit


def release_hold(imei: str) -> PhoneUnit:
    """Return a held unit to Available."""
    unit, _ = find_by_imei(imei)
    if unit.status not in HOLD_STATUSES:
        raise InvalidTransitionError(
            f"Phone {imei} is {unit.status}, not on hold",
            imei=imei,
            status=unit.status,
        )
    unit = transition(imei, unit.status, AVAILABLE)
    db.session.commit()
    current_app.logger.info("Unit %s released to stock", imei)
    return unit


def update_unit(imei: str, *, patch: dict, updated_by_user_id: int | None = None) -> PhoneUnit:
    """
    Correct a unit's intake data while it is Available or Damaged.

    Price changes additionally require the invoice to still be Draft and
    trigger a financial recompute.
    """
    unit, invoice = find_by_imei(imei)
    if unit.status not in (AVAILABLE, DAMAGED):
        raise InvalidTransitionError(
            f"Cannot update phone {imei} with status {unit.status}",
            imei=imei,
            status=unit.status,
        )

    unknown = set(patch) - UNIT_MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}", imei=imei)

    touches_price = bool(UNIT_PRICE_FIELDS & set(patch))
    if touches_price and invoice.status != "DRAFT":
        raise ImmutableInvoiceError(
            "Prices can only change while the invoice is Draft",
            imei=imei,
            invoice_number=invoice.invoice_number,
        )

    try:
        _apply_unit_patch(unit, imei, patch)
    except ValidationError:
        db.session.rollback()
        raise

    if touches_price:
        _recalculate(invoice)
    invoice.updated_by_user_id = updated_by_user_id
    db.session.commit()
    return unit


def _apply_unit_patch(unit: PhoneUnit, imei: str, patch: dict) -> None:
    for field in UNIT_PRICE_FIELDS & set(patch):
        setattr(unit, field, validate_money(patch[field], field))
    if "condition" in patch:
        condition = (patch["condition"] or "").upper()
        if condition not in CONDITIONS:
            raise ValidationError(f"Invalid condition: {condition}", imei=imei)
        unit.condition = condition
    if "warranty_expiry_date" in patch:
        try:
            unit.warranty_expiry_date = parse_iso_date(patch["warranty_expiry_date"])
        except ValueError:
            raise ValidationError("warranty_expiry_date must be a YYYY-MM-DD date", imei=imei)
    if "serial_number" in patch:
        unit.serial_number = patch["serial_number"] or None
    if "notes" in patch:
        unit.notes = patch["notes"]


def _delete_refused(imei: str, invoice: PurchaseInvoice) -> ImmutableInvoiceError:
    return ImmutableInvoiceError(
        f"Cannot delete phone {imei} from invoice with status {invoice.status}",
        imei=imei,
        invoice_number=invoice.invoice_number,
        status=invoice.status,
    )


def delete_unit(imei: str) -> dict:
    """
    Delete an Available unit of a Draft invoice (intake correction).

    The delete is conditional on the unit status and the invoice status, so a
    unit assigned or an invoice verified concurrently is never touched.
    Deleting the last unit deletes its invoice.
    """
    unit, invoice = find_by_imei(imei)
    invoice_id = invoice.id
    if invoice.status != "DRAFT":
        raise _delete_refused(imei, invoice)

    draft_invoice = select(PurchaseInvoice.id).where(
        PurchaseInvoice.id == invoice_id,
        PurchaseInvoice.status == "DRAFT",
    )
    result = db.session.execute(
        delete(PhoneUnit)
        .where(
            PhoneUnit.imei == unit.imei,
            PhoneUnit.status == AVAILABLE,
            PhoneUnit.invoice_id.in_(draft_invoice),
        )
        .execution_options(synchronize_session="fetch")
    )
    if not result.rowcount:
        db.session.rollback()
        unit, invoice = find_by_imei(imei)
        if invoice.status != "DRAFT":
            raise _delete_refused(imei, invoice)
        raise InvalidTransitionError(
            f"Cannot delete phone {imei} with status {unit.status}. Only Available phones can be deleted.",
            imei=imei,
            status=unit.status,
        )

    db.session.expire(invoice, ["units"])
    invoice_deleted = not invoice.units
    if invoice_deleted:
        db.session.delete(invoice)
    else:
        _recalculate(invoice)
    db.session.commit()

    current_app.logger.info(
        "Unit %s deleted from invoice %s%s",
        imei,
        invoice_id,
        " (invoice deleted)" if invoice_deleted else "",
    )
    return {"imei": imei, "invoice_id": invoice_id, "invoice_deleted": invoice_deleted}


def unit_history(imei: str) -> dict:
    """Unit, owning invoice, and every assignment line that carried this IMEI."""
    unit, invoice = find_by_imei(imei)
    lines = (
        db.session.query(DsrAssignmentUnit, DsrAssignment)
        .join(DsrAssignment, DsrAssignment.id == DsrAssignmentUnit.assignment_id)
        .filter(DsrAssignmentUnit.imei == unit.imei)
        .order_by(DsrAssignment.assigned_at.asc(), DsrAssignment.id.asc())
        .all()
    )
    return {
        "unit": unit.to_dict(),
        "invoice": invoice.to_summary(),
        "assignments": [
            {
                "assignment_id": assignment.id,
                "assignment_number": assignment.assignment_number,
                "agent_id": assignment.agent_id,
                "assignment_date": assignment.assignment_date.isoformat(),
                **line.to_dict(),
            }
            for line, assignment in lines
        ],
    }
