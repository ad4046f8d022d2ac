"""
Phone unit ledger tests.

Verifies:
- IMEI format and ledger-wide uniqueness
- Only legal status transitions succeed, via compare-and-set
- Invoice financials follow every unit mutation
- Holds, deletes and intake corrections respect unit status
"""

from datetime import date

import pytest
from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from phonestock.errors import (
    ConflictError,
    ImmutableInvoiceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from phonestock.extensions import db
from phonestock.models import PhoneUnit, PurchaseInvoice
from phonestock.services import ledger_service

from conftest import IMEI_1, IMEI_2, IMEI_3, TODAY


class TestRegisterUnits:

    def test_units_start_available_with_default_warranty(self, make_invoice):
        invoice = make_invoice()
        unit, owner_invoice = ledger_service.find_by_imei(IMEI_1)

        assert owner_invoice.id == invoice.id
        assert unit.status == ledger_service.AVAILABLE
        assert unit.condition == "NEW"
        # invoice date + 12 months product warranty
        assert unit.warranty_expiry_date == date(2027, 10, 18)

    @pytest.mark.parametrize("imei", ["12345", "12345678901234X", "1234567890123456", ""])
    def test_malformed_imei_rejected(self, make_invoice, imei):
        with pytest.raises(ValidationError):
            make_invoice(imeis=(imei,))
        assert db.session.query(PurchaseInvoice).count() == 0

    def test_imei_whitespace_is_trimmed(self, make_invoice):
        make_invoice(imeis=(f"  {IMEI_1} ",))
        unit, _ = ledger_service.find_by_imei(IMEI_1)
        assert unit.imei == IMEI_1

    def test_duplicate_within_batch(self, make_invoice):
        with pytest.raises(ConflictError) as exc:
            make_invoice(imeis=(IMEI_1, IMEI_1))
        assert exc.value.context["imei"] == IMEI_1

    def test_duplicate_across_invoices_names_imei(self, make_invoice):
        make_invoice(number="INV-001", imeis=(IMEI_1,))
        with pytest.raises(ConflictError) as exc:
            make_invoice(number="INV-002", imeis=(IMEI_2, IMEI_1))

        assert IMEI_1 in exc.value.message
        assert db.session.query(PhoneUnit).count() == 1
        assert db.session.query(PurchaseInvoice).count() == 1

    def test_find_unknown_imei(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.find_by_imei(IMEI_3)


class TestTransition:

    def test_legal_transition(self, make_invoice):
        make_invoice()
        unit = ledger_service.transition(IMEI_1, ledger_service.AVAILABLE, ledger_service.ASSIGNED)
        db.session.commit()
        assert unit.status == ledger_service.ASSIGNED

    @pytest.mark.parametrize("from_status,to_status", [
        ("AVAILABLE", "SOLD"),
        ("SOLD", "AVAILABLE"),
        ("SOLD", "RETURNED"),
        ("ASSIGNED", "AVAILABLE"),
        ("RETURNED", "ASSIGNED"),
    ])
    def test_illegal_pairs_rejected(self, make_invoice, from_status, to_status):
        make_invoice()
        with pytest.raises(InvalidTransitionError, match="Illegal"):
            ledger_service.transition(IMEI_1, from_status, to_status)

    def test_stale_expected_status_fails(self, make_invoice):
        make_invoice()
        # Another writer moves the unit first
        db.session.execute(
            update(PhoneUnit).where(PhoneUnit.imei == IMEI_1).values(status="DAMAGED")
        )
        db.session.commit()

        with pytest.raises(InvalidTransitionError) as exc:
            ledger_service.transition(IMEI_1, ledger_service.AVAILABLE, ledger_service.ASSIGNED)
        assert exc.value.context["status"] == "DAMAGED"
        assert exc.value.context["expected_status"] == "AVAILABLE"

    def test_unknown_imei(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.transition(IMEI_3, ledger_service.AVAILABLE, ledger_service.ASSIGNED)

    def test_only_outcome_fields_may_be_set(self, make_invoice):
        make_invoice()
        with pytest.raises(ValidationError):
            ledger_service.transition(
                IMEI_1, ledger_service.AVAILABLE, ledger_service.ASSIGNED, cost_price_cents=1
            )

    def test_sold_is_terminal(self, make_invoice):
        make_invoice()
        ledger_service.transition(IMEI_1, ledger_service.AVAILABLE, ledger_service.ASSIGNED)
        ledger_service.transition(IMEI_1, ledger_service.ASSIGNED, ledger_service.SOLD, sold_price_cents=13000)
        db.session.commit()

        for target in ledger_service.UNIT_STATUSES:
            with pytest.raises(InvalidTransitionError):
                ledger_service.transition(IMEI_1, ledger_service.SOLD, target)

    def test_return_to_stock(self, make_invoice):
        make_invoice()
        ledger_service.transition(IMEI_1, ledger_service.AVAILABLE, ledger_service.ASSIGNED)
        unit = ledger_service.return_to_stock(IMEI_1, returned_at=None, return_notes="unsold")
        db.session.commit()

        assert unit.status == ledger_service.AVAILABLE
        assert unit.return_notes == "unsold"


class TestHolds:

    def test_hold_and_release(self, make_invoice):
        make_invoice()
        unit = ledger_service.set_hold_status(IMEI_1, "damaged", notes="cracked screen")
        assert unit.status == "DAMAGED"
        assert unit.notes == "cracked screen"

        unit = ledger_service.release_hold(IMEI_1)
        assert unit.status == ledger_service.AVAILABLE

    def test_invalid_hold_status(self, make_invoice):
        make_invoice()
        with pytest.raises(ValidationError):
            ledger_service.set_hold_status(IMEI_1, "SOLD")

    def test_release_requires_hold(self, make_invoice):
        make_invoice()
        with pytest.raises(InvalidTransitionError, match="not on hold"):
            ledger_service.release_hold(IMEI_1)


class TestCorrections:

    def test_price_update_recomputes_draft_invoice(self, make_invoice):
        invoice = make_invoice(imeis=(IMEI_1, IMEI_2))
        ledger_service.update_unit(IMEI_1, patch={"cost_price_cents": 9000})

        invoice = db.session.get(PurchaseInvoice, invoice.id)
        assert invoice.subtotal_cents == 19000
        assert invoice.total_cost_cents == 19000

    def test_price_update_refused_after_verify(self, verified_invoice):
        verified_invoice()
        with pytest.raises(ImmutableInvoiceError):
            ledger_service.update_unit(IMEI_1, patch={"selling_price_cents": 15000})

    def test_notes_update_allowed_after_verify(self, verified_invoice):
        verified_invoice()
        unit = ledger_service.update_unit(IMEI_1, patch={"notes": "display unit", "condition": "open_box"})
        assert unit.notes == "display unit"
        assert unit.condition == "OPEN_BOX"

    def test_update_refused_when_assigned(self, make_invoice):
        make_invoice()
        ledger_service.transition(IMEI_1, ledger_service.AVAILABLE, ledger_service.ASSIGNED)
        db.session.commit()
        with pytest.raises(InvalidTransitionError):
            ledger_service.update_unit(IMEI_1, patch={"notes": "x"})

    def test_delete_available_unit(self, make_invoice):
        invoice = make_invoice(imeis=(IMEI_1, IMEI_2))
        result = ledger_service.delete_unit(IMEI_1)

        assert result == {"imei": IMEI_1, "invoice_id": invoice.id, "invoice_deleted": False}
        invoice = db.session.get(PurchaseInvoice, invoice.id)
        assert invoice.total_units == 1
        assert invoice.subtotal_cents == 10000

    def test_delete_last_unit_removes_invoice(self, make_invoice):
        invoice = make_invoice()
        invoice_id = invoice.id
        result = ledger_service.delete_unit(IMEI_1)

        assert result["invoice_deleted"] is True
        assert db.session.get(PurchaseInvoice, invoice_id) is None

    def test_delete_refused_unless_available(self, make_invoice):
        make_invoice()
        ledger_service.set_hold_status(IMEI_1, "RESERVED")
        with pytest.raises(InvalidTransitionError) as exc:
            ledger_service.delete_unit(IMEI_1)
        assert exc.value.context["status"] == "RESERVED"
        assert db.session.query(PhoneUnit).count() == 1

    def test_delete_refused_on_verified_invoice(self, verified_invoice):
        invoice = verified_invoice(imeis=(IMEI_1, IMEI_2))
        with pytest.raises(ImmutableInvoiceError) as exc:
            ledger_service.delete_unit(IMEI_1)

        assert exc.value.context["status"] == "VERIFIED"
        invoice = db.session.get(PurchaseInvoice, invoice.id)
        assert invoice.total_units == 2
        assert invoice.subtotal_cents == 20000

    def test_delete_after_concurrent_verify_is_refused(self, make_invoice):
        invoice = make_invoice()
        invoice_id = invoice.id
        db.session.execute(
            update(PurchaseInvoice).where(PurchaseInvoice.id == invoice_id).values(status="VERIFIED")
        )
        db.session.commit()
        # Stale Draft view in this session
        _, invoice = ledger_service.find_by_imei(IMEI_1)
        set_committed_value(invoice, "status", "DRAFT")

        with pytest.raises(ImmutableInvoiceError):
            ledger_service.delete_unit(IMEI_1)


def test_unit_history_without_assignments(make_invoice):
    make_invoice()
    history = ledger_service.unit_history(IMEI_1)
    assert history["unit"]["imei"] == IMEI_1
    assert history["invoice"]["invoice_number"] == "INV-001"
    assert history["invoice"]["invoice_date"] == TODAY.isoformat()
    assert history["assignments"] == []
