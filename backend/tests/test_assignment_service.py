"""
Assignment engine tests.

Verifies:
- Units are claimed atomically; a lost race names the IMEI and assigns nothing
- One assignment per agent per business day
- Sales and returns move line, ledger unit and schedule counters together
- Returning sold or foreign IMEIs is a logged no-op
- DSRs only act on their own assignments
"""

from datetime import date, datetime

import httpx
import pytest
from sqlalchemy import update

from phonestock.errors import (
    AlreadyResolvedError,
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnitUnavailableError,
    ValidationError,
)
from phonestock.extensions import db
from phonestock.models import DsrAssignment, DsrSchedule, PhoneUnit, PurchaseInvoice
from phonestock.services import (
    assignment_service,
    invoice_service,
    ledger_service,
    notification_service,
    schedule_service,
)
from phonestock.services.auth_service import Principal

from conftest import IMEI_1, IMEI_2, IMEI_3, NOW, TODAY


@pytest.fixture
def assign(owner, dsr):
    def _assign(units, agent=None, day=TODAY, **kwargs):
        return assignment_service.create_assignment(
            agent_id=(agent or dsr).id,
            units=units,
            assigned_by_user_id=owner.id,
            day=day,
            now=NOW,
            **kwargs,
        )

    return _assign


def _unit_status(imei):
    return db.session.query(PhoneUnit.status).filter_by(imei=imei).scalar()


class TestCreateAssignment:

    def test_assigns_units_and_schedule(self, verified_invoice, assign, dsr):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        assignment = assign([IMEI_1, {"imei": IMEI_2, "target_price_cents": 12500}])

        assert assignment.status == assignment_service.STATUS_ACTIVE
        assert assignment.assignment_number.startswith("ASG-20261018-")
        assert assignment.total_units == 2
        assert assignment.total_value_cents == 20000
        assert assignment.total_target_cents == 24500
        assert [line.status for line in assignment.lines] == ["ASSIGNED", "ASSIGNED"]
        assert _unit_status(IMEI_1) == ledger_service.ASSIGNED
        assert _unit_status(IMEI_2) == ledger_service.ASSIGNED

        schedule = schedule_service.get_schedule_for_day(dsr.id, TODAY)
        assert schedule.assignment_id == assignment.id
        assert assignment.schedule_id == schedule.id
        assert schedule.units_assigned == 2
        assert schedule.notes == "Auto-created for assignment"

    def test_defaults_to_business_today(self, verified_invoice, owner, dsr):
        verified_invoice()
        # 20:00 UTC on the 17th is already the 18th in Colombo
        assignment = assignment_service.create_assignment(
            agent_id=dsr.id,
            units=[IMEI_1],
            assigned_by_user_id=owner.id,
            now=datetime(2026, 10, 17, 20, 0),
        )
        assert assignment.assignment_date == TODAY

    def test_draft_invoice_units_are_assignable(self, make_invoice, assign):
        make_invoice()
        assignment = assign([IMEI_1])
        assert assignment.total_units == 1

    def test_lost_race_assigns_nothing(self, verified_invoice, assign, dsr):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        # Stale read: the unit looked Available, then another writer took it
        unit, _ = ledger_service.find_by_imei(IMEI_2)
        assert unit.status == ledger_service.AVAILABLE
        db.session.execute(update(PhoneUnit).where(PhoneUnit.imei == IMEI_2).values(status="RESERVED"))
        db.session.commit()

        with pytest.raises(UnitUnavailableError) as exc:
            assign([IMEI_1, IMEI_2])

        assert exc.value.imei == IMEI_2
        assert exc.value.status == "RESERVED"
        assert db.session.query(DsrAssignment).count() == 0
        assert _unit_status(IMEI_1) == ledger_service.AVAILABLE
        schedule = schedule_service.get_schedule_for_day(dsr.id, TODAY)
        assert schedule.assignment_id is None
        assert schedule.units_assigned == 0

    def test_unit_held_by_other_agent(self, verified_invoice, assign, other_dsr):
        verified_invoice()
        assign([IMEI_1], agent=other_dsr)

        with pytest.raises(UnitUnavailableError, match="Current status: ASSIGNED"):
            assign([IMEI_1])

    def test_one_assignment_per_day(self, verified_invoice, assign):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        first = assign([IMEI_1])

        with pytest.raises(ConflictError) as exc:
            assign([IMEI_2])
        assert exc.value.context["assignment_id"] == first.id
        assert _unit_status(IMEI_2) == ledger_service.AVAILABLE

    @pytest.mark.parametrize("resolution", ["return", "sell"])
    def test_one_assignment_per_day_after_resolution(self, verified_invoice, assign, dsr_principal, resolution):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        first = assign([IMEI_1])
        if resolution == "return":
            resolved = assignment_service.return_units(first.id, [IMEI_1], actor=dsr_principal, now=NOW).assignment
            assert resolved.status == assignment_service.STATUS_FULLY_RETURNED
        else:
            resolved = assignment_service.mark_sold(first.id, IMEI_1, sold_price_cents=13000, actor=dsr_principal)
            assert resolved.status == assignment_service.STATUS_PARTIALLY_RETURNED

        with pytest.raises(ConflictError) as exc:
            assign([IMEI_2])
        assert exc.value.context["assignment_id"] == first.id
        assert _unit_status(IMEI_2) == ledger_service.AVAILABLE

    def test_racing_requests_for_same_unit(self, verified_invoice, assign, dsr, other_dsr, monkeypatch):
        verified_invoice()
        numbers = iter(["ASG-20261018-001", "ASG-20261018-002"])
        monkeypatch.setattr(assignment_service, "generate_assignment_number", lambda day: next(numbers))

        real_find = ledger_service.find_by_imei
        winner = []

        def find_then_lose_race(imei):
            found = real_find(imei)
            if not winner:
                # The competing request commits between this read and the claim
                winner.append(None)
                winner[0] = assign([IMEI_1], agent=other_dsr)
            return found

        monkeypatch.setattr(ledger_service, "find_by_imei", find_then_lose_race)

        with pytest.raises(UnitUnavailableError) as exc:
            assign([IMEI_1])

        assert exc.value.imei == IMEI_1
        assert exc.value.status == ledger_service.ASSIGNED
        assert winner[0].agent_id == other_dsr.id
        assert db.session.query(DsrAssignment).count() == 1
        assert schedule_service.get_schedule_for_day(dsr.id, TODAY).assignment_id is None

    def test_unknown_imei(self, verified_invoice, assign):
        verified_invoice()
        with pytest.raises(NotFoundError):
            assign([IMEI_1, IMEI_3])
        assert _unit_status(IMEI_1) == ledger_service.AVAILABLE

    def test_duplicate_imei_in_request(self, verified_invoice, assign):
        verified_invoice()
        with pytest.raises(ValidationError, match="Duplicate"):
            assign([IMEI_1, IMEI_1])

    def test_agent_must_be_dsr(self, verified_invoice, assign, clerk):
        verified_invoice()
        with pytest.raises(ValidationError, match="not a DSR"):
            assign([IMEI_1], agent=clerk)

    def test_not_on_leave_day(self, verified_invoice, assign, owner, dsr):
        verified_invoice()
        schedule_service.request_leave(
            agent_id=dsr.id,
            start_date=TODAY,
            end_date=TODAY,
            leave_type="SICK",
            requested_by_user_id=owner.id,
        )
        with pytest.raises(InvalidTransitionError):
            assign([IMEI_1])
        assert _unit_status(IMEI_1) == ledger_service.AVAILABLE


class TestMarkSold:

    def test_sale_updates_everything(self, verified_invoice, assign, dsr_principal, dsr):
        invoice = verified_invoice(imeis=(IMEI_1, IMEI_2))
        assignment = assign([IMEI_1, IMEI_2])

        assignment = assignment_service.mark_sold(
            assignment.id, IMEI_1, sold_price_cents=13000, actor=dsr_principal, sold_to="walk-in",
        )

        line = assignment.line_for(IMEI_1)
        assert line.status == "SOLD"
        assert line.profit_cents == 3000
        assert assignment.status == assignment_service.STATUS_PARTIALLY_RETURNED
        assert assignment.sold_units == 1
        assert assignment.sold_revenue_cents == 13000
        assert assignment.profit_cents == 3000

        unit, _ = ledger_service.find_by_imei(IMEI_1)
        assert unit.status == ledger_service.SOLD
        assert unit.sold_price_cents == 13000
        assert unit.sold_to == "walk-in"
        assert invoice_service.get_invoice(invoice.id).sold_units == 1

        schedule = schedule_service.get_schedule_for_day(dsr.id, TODAY)
        assert schedule.units_sold == 1
        assert schedule.revenue_cents == 13000
        assert schedule.profit_cents == 3000

    def test_sold_twice(self, verified_invoice, assign, dsr_principal):
        verified_invoice()
        assignment = assign([IMEI_1])
        assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=13000, actor=dsr_principal)

        with pytest.raises(AlreadyResolvedError, match="already sold"):
            assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=14000, actor=dsr_principal)

        unit, _ = ledger_service.find_by_imei(IMEI_1)
        assert unit.sold_price_cents == 13000

    def test_sell_after_return(self, verified_invoice, assign, dsr_principal):
        verified_invoice()
        assignment = assign([IMEI_1])
        assignment_service.return_units(assignment.id, [IMEI_1], actor=dsr_principal, now=NOW)

        with pytest.raises(AlreadyResolvedError, match="already returned"):
            assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=13000, actor=dsr_principal)
        assert _unit_status(IMEI_1) == ledger_service.AVAILABLE

    def test_imei_not_in_assignment(self, verified_invoice, assign, dsr_principal):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        assignment = assign([IMEI_1])
        with pytest.raises(NotFoundError):
            assignment_service.mark_sold(assignment.id, IMEI_2, sold_price_cents=1, actor=dsr_principal)

    def test_other_dsr_forbidden(self, verified_invoice, assign, other_dsr):
        verified_invoice()
        assignment = assign([IMEI_1])
        intruder = Principal(user_id=other_dsr.id, role="dsr")

        with pytest.raises(AuthorizationError):
            assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=13000, actor=intruder)
        assert _unit_status(IMEI_1) == ledger_service.ASSIGNED

    def test_staff_may_record_sale(self, verified_invoice, assign, owner_principal):
        verified_invoice()
        assignment = assign([IMEI_1])
        assignment = assignment_service.mark_sold(
            assignment.id, IMEI_1, sold_price_cents=12000, actor=owner_principal,
        )
        assert assignment.status == assignment_service.STATUS_PARTIALLY_RETURNED


class TestReturnUnits:

    def test_return_round_trip(self, verified_invoice, assign, dsr_principal, dsr):
        invoice = verified_invoice(imeis=(IMEI_1, IMEI_2))
        financials_before = (invoice.subtotal_cents, invoice.total_cost_cents, invoice.total_selling_cents)
        assignment = assign([IMEI_1, IMEI_2])

        result = assignment_service.return_units(
            assignment.id, [IMEI_1, IMEI_2], actor=dsr_principal, notes="rain", now=NOW,
        )

        assert result.returned == [IMEI_1, IMEI_2]
        assert result.skipped == []
        assignment = result.assignment
        assert assignment.status == assignment_service.STATUS_FULLY_RETURNED
        assert assignment.returned_units == 2
        assert assignment.returned_by_user_id == dsr.id
        assert _unit_status(IMEI_1) == ledger_service.AVAILABLE
        assert _unit_status(IMEI_2) == ledger_service.AVAILABLE

        unit, _ = ledger_service.find_by_imei(IMEI_1)
        assert unit.return_notes == "rain"
        schedule = schedule_service.get_schedule_for_day(dsr.id, TODAY)
        assert schedule.units_returned == 2

        db.session.expire_all()
        invoice = db.session.get(PurchaseInvoice, invoice.id)
        assert (invoice.subtotal_cents, invoice.total_cost_cents, invoice.total_selling_cents) == financials_before
        assert financials_before == (20000, 20000, 24000)

    def test_returned_unit_can_be_assigned_again(self, verified_invoice, assign, dsr_principal):
        verified_invoice()
        first = assign([IMEI_1])
        assignment_service.return_units(first.id, [IMEI_1], actor=dsr_principal, now=NOW)

        second = assign([IMEI_1], day=date(2026, 10, 19))
        assert second.total_units == 1
        history = ledger_service.unit_history(IMEI_1)
        assert [a["status"] for a in history["assignments"]] == ["RETURNED", "ASSIGNED"]

    def test_return_after_sale_is_noop(self, verified_invoice, assign, dsr_principal):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        assignment = assign([IMEI_1, IMEI_2])
        assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=13000, actor=dsr_principal)

        result = assignment_service.return_units(
            assignment.id, [IMEI_1, IMEI_2, IMEI_3], actor=dsr_principal, now=NOW,
        )

        assert result.returned == [IMEI_2]
        assert result.skipped == [
            {"imei": IMEI_1, "reason": "ALREADY_SOLD"},
            {"imei": IMEI_3, "reason": "NOT_IN_ASSIGNMENT"},
        ]
        assert _unit_status(IMEI_1) == ledger_service.SOLD
        assert result.assignment.status == assignment_service.STATUS_PARTIALLY_RETURNED

    def test_empty_list_rejected(self, verified_invoice, assign, dsr_principal):
        verified_invoice()
        assignment = assign([IMEI_1])
        with pytest.raises(ValidationError):
            assignment_service.return_units(assignment.id, [], actor=dsr_principal)


class TestStatusDerivation:

    @pytest.mark.parametrize("outcomes,expected", [
        ([], "ACTIVE"),
        (["SOLD"], "PARTIALLY_RETURNED"),
        (["RETURNED"], "PARTIALLY_RETURNED"),
        (["SOLD", "SOLD"], "PARTIALLY_RETURNED"),
        (["SOLD", "RETURNED"], "PARTIALLY_RETURNED"),
        (["RETURNED", "RETURNED"], "FULLY_RETURNED"),
    ])
    def test_status_from_lines(self, verified_invoice, assign, dsr_principal, outcomes, expected):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        assignment = assign([IMEI_1, IMEI_2])
        for imei, outcome in zip((IMEI_1, IMEI_2), outcomes):
            if outcome == "SOLD":
                assignment_service.mark_sold(assignment.id, imei, sold_price_cents=13000, actor=dsr_principal)
            else:
                assignment_service.return_units(assignment.id, [imei], actor=dsr_principal, now=NOW)

        assert assignment_service.get_assignment(assignment.id).status == expected


class TestListing:

    def test_dsr_sees_only_own(self, verified_invoice, assign, other_dsr, dsr_principal, owner_principal):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        assign([IMEI_1])
        assign([IMEI_2], agent=other_dsr)

        assert assignment_service.list_assignments(actor=dsr_principal)["total"] == 1
        assert assignment_service.list_assignments(actor=owner_principal)["total"] == 2

    def test_daily_summary(self, verified_invoice, assign, dsr_principal):
        verified_invoice(imeis=(IMEI_1, IMEI_2))
        assignment = assign([IMEI_1, IMEI_2])
        assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=13000, actor=dsr_principal)

        summary = assignment_service.daily_summary(TODAY)
        assert summary["date"] == "2026-10-18"
        assert summary["rows"][0]["agent_name"] == "Kasun Perera"
        assert summary["totals"]["sold"] == 1
        assert summary["totals"]["profit_cents"] == 3000

    def test_malformed_dates_rejected(self, db_session):
        with pytest.raises(ValidationError):
            assignment_service.daily_summary("2026-13-01")
        with pytest.raises(ValidationError):
            assignment_service.list_assignments(end_date="2026-10-18xyz")


class TestNotification:

    def test_failed_notifier_does_not_fail_assignment(self, app, verified_invoice, assign, monkeypatch):
        verified_invoice()
        monkeypatch.setitem(app.config, "TELEGRAM_BOT_TOKEN", "token")
        monkeypatch.setitem(app.config, "TELEGRAM_CHAT_ID", "chat")
        sent = []

        def failing_send(text):
            sent.append(text)
            raise httpx.ConnectError("telegram unreachable")

        monkeypatch.setattr(notification_service, "send_message", failing_send)

        assignment = assign([IMEI_1], notes="Galle road")

        assert db.session.get(DsrAssignment, assignment.id) is not None
        assert IMEI_1 in sent[0]
        assert assignment.assignment_number in sent[0]
        assert "Galle road" in sent[0]

    def test_formatting_error_does_not_fail_assignment(self, app, verified_invoice, assign, monkeypatch):
        verified_invoice()
        monkeypatch.setitem(app.config, "TELEGRAM_BOT_TOKEN", "token")
        monkeypatch.setitem(app.config, "TELEGRAM_CHAT_ID", "chat")

        def broken_format(assignment):
            raise KeyError("agent")

        monkeypatch.setattr(notification_service, "format_assignment_message", broken_format)

        assignment = assign([IMEI_1])
        assert db.session.get(DsrAssignment, assignment.id) is not None
        assert _unit_status(IMEI_1) == ledger_service.ASSIGNED

    def test_notify_can_be_skipped(self, verified_invoice, assign, monkeypatch):
        verified_invoice()
        monkeypatch.setattr(
            notification_service, "send_assignment_notification",
            lambda assignment: pytest.fail("notifier called"),
        )
        assign([IMEI_1], notify=False)


def test_end_to_end_invoice_to_sale(db_session, owner, dsr, product):
    """INV-001 with one phone: intake, proof, verify, assign, sell, late return."""
    invoice = invoice_service.create_invoice(
        data={
            "invoice_number": "INV-001",
            "supplier_name": "Colombo Mobile Distributors",
            "units": [{
                "imei": IMEI_1,
                "product_id": product.id,
                "cost_price_cents": 10000,
                "selling_price_cents": 12000,
            }],
        },
        created_by_user_id=owner.id,
    )
    assert invoice.status == "DRAFT"

    invoice_service.attach_proof(invoice.id, proof_key="inv-001.jpg", proof_url="/uploads/inv-001.jpg")
    invoice = invoice_service.verify_invoice(invoice.id, verified_by_user_id=owner.id)
    assert invoice.status == "VERIFIED"

    assignment = assignment_service.create_assignment(
        agent_id=dsr.id, units=[IMEI_1], assigned_by_user_id=owner.id, now=NOW,
    )
    assert _unit_status(IMEI_1) == "ASSIGNED"

    agent = Principal(user_id=dsr.id, role="dsr")
    sold = assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=13000, actor=agent)
    assert _unit_status(IMEI_1) == "SOLD"
    assert sold.status == "PARTIALLY_RETURNED"

    schedule = db.session.query(DsrSchedule).filter_by(agent_id=dsr.id, schedule_date=TODAY).one()
    assert schedule.revenue_cents == 13000
    assert schedule.profit_cents == 3000

    result = assignment_service.return_units(assignment.id, [IMEI_1], actor=agent, now=NOW)
    assert result.returned == []
    assert _unit_status(IMEI_1) == "SOLD"
    assert schedule_service.get_schedule(schedule.id).units_returned == 0
