# Overview: Service-layer operations for DSR assignments; encapsulates business logic.

"""
Assignment Engine

WHY: A field agent takes a set of Available phones out for one business day.
Each phone must be held by at most one open assignment, and every outcome
(sold, returned) must land in the ledger, the assignment and the agent's
schedule together.

DESIGN:
- Units are claimed with a compare-and-set AVAILABLE -> ASSIGNED. Losing the
  race raises UnitUnavailableError naming the IMEI, and the whole assignment
  is rolled back; nothing is partially assigned.
- The day's schedule is ensured first (idempotent), then claimed with a
  conditional update on assignment_id IS NULL.
- Status and totals are derived from the lines on every persist
  (recalculate_totals); they are never written independently.
- The notifier runs after commit and cannot fail the assignment.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import date, datetime

from flask import current_app
from sqlalchemy import select

from ..extensions import db
from ..models import DsrAssignment, DsrAssignmentUnit, PhoneUnit, PurchaseInvoice
from ..errors import (
    AlreadyResolvedError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PhoneStockError,
    UnitUnavailableError,
    ValidationError,
)
from ..validation import normalize_imei, validate_date, validate_money
from ..time_utils import business_today, parse_iso_datetime, utcnow
from .concurrency import commit_or_conflict, compare_and_set, flush_or_conflict
from . import auth_service, ledger_service, notification_service, schedule_service
from .auth_service import Principal


STATUS_ACTIVE = "ACTIVE"
STATUS_PARTIALLY_RETURNED = "PARTIALLY_RETURNED"
STATUS_FULLY_RETURNED = "FULLY_RETURNED"
STATUS_COMPLETED = "COMPLETED"
ASSIGNMENT_STATUSES = (STATUS_ACTIVE, STATUS_PARTIALLY_RETURNED, STATUS_FULLY_RETURNED, STATUS_COMPLETED)

LINE_ASSIGNED = "ASSIGNED"
LINE_SOLD = "SOLD"
LINE_RETURNED = "RETURNED"


@dataclass
class ReturnResult:
    assignment: DsrAssignment
    returned: list[str] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "returned": self.returned,
            "skipped": self.skipped,
            "assignment": self.assignment.to_summary(),
        }


def generate_assignment_number(day: date) -> str:
    """ASG-YYYYMMDD-NNN. Collisions are not retried; the unique index reports them."""
    return f"ASG-{day.strftime('%Y%m%d')}-{random.randint(0, 999):03d}"


def recalculate_totals(assignment: DsrAssignment) -> DsrAssignment:
    """Derive totals and status from the current lines."""
    lines = list(assignment.lines)
    sold = [line for line in lines if line.status == LINE_SOLD]
    returned = [line for line in lines if line.status == LINE_RETURNED]

    assignment.total_units = len(lines)
    assignment.total_value_cents = sum(line.assigned_price_cents for line in lines)
    assignment.total_target_cents = sum(line.target_price_cents for line in lines)
    assignment.sold_units = len(sold)
    assignment.sold_revenue_cents = sum(line.sold_price_cents or 0 for line in sold)
    assignment.returned_units = len(returned)
    assignment.profit_cents = sum((line.sold_price_cents or 0) - line.assigned_price_cents for line in sold)

    if lines and len(returned) == len(lines):
        assignment.status = STATUS_FULLY_RETURNED
    elif sold or returned:
        assignment.status = STATUS_PARTIALLY_RETURNED
    else:
        assignment.status = STATUS_ACTIVE
    return assignment


def _normalize_requested_units(units: list) -> list[dict]:
    if not units:
        raise ValidationError("At least one phone is required")

    requested = []
    seen: set[str] = set()
    for item in units:
        if isinstance(item, str):
            item = {"imei": item}
        if not isinstance(item, dict):
            raise ValidationError("Each unit must be an IMEI or an object with an imei")
        imei = normalize_imei(item.get("imei"))
        if imei in seen:
            raise ValidationError(f"Duplicate IMEI in request: {imei}", imei=imei)
        seen.add(imei)
        target = item.get("target_price_cents")
        requested.append({
            "imei": imei,
            "target_price_cents": validate_money(target, "target_price_cents", required=False),
        })
    return requested


def _claim_unit(imei: str) -> PhoneUnit:
    """AVAILABLE -> ASSIGNED, skipping units that belong to cancelled invoices."""
    live_invoice = PhoneUnit.invoice_id.in_(
        select(PurchaseInvoice.id).where(PurchaseInvoice.status != "CANCELLED")
    )
    try:
        return ledger_service.transition(
            imei,
            ledger_service.AVAILABLE,
            ledger_service.ASSIGNED,
            extra_criteria=(live_invoice,),
        )
    except InvalidTransitionError as exc:
        observed = exc.context.get("status")
        if observed == ledger_service.AVAILABLE:
            raise UnitUnavailableError(
                imei,
                status=observed,
                message=f"Phone with IMEI {imei} belongs to a cancelled invoice",
            )
        raise UnitUnavailableError(imei, status=observed)


def create_assignment(
    *,
    agent_id: int,
    units: list,
    assigned_by_user_id: int,
    day=None,
    notes: str | None = None,
    now: datetime | None = None,
    notify: bool = True,
) -> DsrAssignment:
    """
    Assign Available units to an agent for one business day.

    Args:
        agent_id: DSR receiving the phones
        units: [{imei, target_price_cents?}] or plain IMEI strings
        assigned_by_user_id: staff member creating the assignment
        day: business day (defaults to today in the business timezone)

    Raises:
        NotFoundError: agent or an IMEI does not exist
        ValidationError: agent is not an active DSR, malformed IMEIs
        InvalidTransitionError: the day is not an assignable workday
        ConflictError: the day's schedule already holds an assignment
        UnitUnavailableError: a unit is not Available (names the IMEI)
    """
    auth_service.get_active_agent(agent_id)
    requested = _normalize_requested_units(units)
    now = now or utcnow()
    day = validate_date(day, "day") or business_today(now)

    schedule = schedule_service.ensure_schedule(agent_id, day, created_by_user_id=assigned_by_user_id)
    schedule_service.require_assignable(schedule)
    if schedule.assignment_id is not None:
        raise ConflictError(
            "DSR already has an assignment for this date. Please return existing phones first.",
            schedule_id=schedule.id,
            assignment_id=schedule.assignment_id,
        )

    for item in requested:
        ledger_service.find_by_imei(item["imei"])

    assignment = DsrAssignment(
        assignment_number=generate_assignment_number(day),
        assignment_date=day,
        assigned_at=now,
        agent_id=agent_id,
        status=STATUS_ACTIVE,
        notes=notes,
        assigned_by_user_id=assigned_by_user_id,
    )
    db.session.add(assignment)
    flush_or_conflict(
        f"Assignment number {assignment.assignment_number} already exists",
        assignment_number=assignment.assignment_number,
    )

    try:
        schedule_service.claim_for_assignment(schedule, assignment.id, len(requested))
        assignment.schedule_id = schedule.id

        for position, item in enumerate(requested):
            unit = _claim_unit(item["imei"])
            target = item["target_price_cents"]
            assignment.lines.append(DsrAssignmentUnit(
                position=position,
                invoice_id=unit.invoice_id,
                product_id=unit.product_id,
                imei=unit.imei,
                assigned_price_cents=unit.cost_price_cents,
                target_price_cents=target if target is not None else unit.selling_price_cents,
                status=LINE_ASSIGNED,
            ))
    except PhoneStockError:
        db.session.rollback()
        raise

    recalculate_totals(assignment)
    commit_or_conflict(
        "DSR already has an assignment for this date",
        schedule_id=schedule.id,
    )

    current_app.logger.info(
        "Assignment created: %s for agent %s with %s units",
        assignment.assignment_number, agent_id, assignment.total_units,
    )

    if notify:
        notification_service.send_assignment_notification(assignment)
    return assignment


def get_assignment(assignment_id: int) -> DsrAssignment:
    assignment = db.session.get(DsrAssignment, assignment_id)
    if not assignment:
        raise NotFoundError(f"Assignment {assignment_id} not found", assignment_id=assignment_id)
    return assignment


def get_assignment_for(assignment_id: int, *, actor: Principal) -> DsrAssignment:
    assignment = get_assignment(assignment_id)
    auth_service.require_self_or_staff(actor, assignment.agent_id, assignment_id=assignment.id)
    return assignment


def _coerce_sold_at(value) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError("sold_at must be an ISO-8601 datetime")
    return parsed


def mark_sold(
    assignment_id: int,
    imei: str,
    *,
    sold_price_cents: int,
    actor: Principal,
    sold_at=None,
    sold_to: str | None = None,
) -> DsrAssignment:
    """
    Record the sale of one assigned phone.

    Line, ledger unit and schedule counters change in one transaction.
    Raises AlreadyResolvedError if the phone was already sold or returned.
    """
    assignment = get_assignment_for(assignment_id, actor=actor)
    imei = str(imei or "").strip()
    sold_price_cents = validate_money(sold_price_cents, "sold_price_cents")
    sold_at = _coerce_sold_at(sold_at)

    line = assignment.line_for(imei)
    if line is None:
        raise NotFoundError(
            f"Phone with IMEI {imei} not found in this assignment",
            imei=imei,
            assignment_id=assignment.id,
        )

    changed = compare_and_set(
        DsrAssignmentUnit,
        where={"id": line.id, "status": LINE_ASSIGNED},
        values={"status": LINE_SOLD, "sold_price_cents": sold_price_cents, "sold_at": sold_at},
    )
    if not changed:
        db.session.rollback()
        status = db.session.execute(
            select(DsrAssignmentUnit.status).where(DsrAssignmentUnit.id == line.id)
        ).scalar()
        raise AlreadyResolvedError(
            f"Phone is already {(status or '').lower()}. Cannot mark as sold.",
            imei=imei,
            status=status,
            assignment_id=assignment.id,
        )

    try:
        ledger_service.transition(
            imei,
            ledger_service.ASSIGNED,
            ledger_service.SOLD,
            sold_price_cents=sold_price_cents,
            sold_at=sold_at,
            sold_to=sold_to,
        )
    except PhoneStockError:
        db.session.rollback()
        raise

    schedule_service.record_sale(
        assignment.schedule_id,
        revenue_cents=sold_price_cents,
        profit_cents=sold_price_cents - line.assigned_price_cents,
    )
    assignment.updated_by_user_id = actor.user_id
    recalculate_totals(assignment)
    db.session.commit()

    current_app.logger.info(
        "Phone %s marked as sold in assignment %s for %s",
        imei, assignment.assignment_number, sold_price_cents,
    )
    return assignment


def return_units(
    assignment_id: int,
    imeis: list[str],
    *,
    actor: Principal,
    notes: str | None = None,
    now: datetime | None = None,
) -> ReturnResult:
    """
    Return unsold phones to stock.

    Partial success by contract: IMEIs that are not in the assignment or are
    already sold or returned are skipped with a warning, never an error.
    Each returned phone goes ASSIGNED -> RETURNED -> AVAILABLE in the ledger.
    """
    assignment = get_assignment_for(assignment_id, actor=actor)
    if not isinstance(imeis, (list, tuple)) or not imeis:
        raise ValidationError("imeis must be a non-empty list", assignment_id=assignment.id)
    now = now or utcnow()

    result = ReturnResult(assignment=assignment)
    for raw in dict.fromkeys(str(i or "").strip() for i in imeis):
        line = assignment.line_for(raw)
        if line is None:
            current_app.logger.warning("IMEI %s not found in assignment %s", raw, assignment.assignment_number)
            result.skipped.append({"imei": raw, "reason": "NOT_IN_ASSIGNMENT"})
            continue
        if line.status != LINE_ASSIGNED:
            current_app.logger.warning("Phone %s already %s, not returned", raw, line.status.lower())
            result.skipped.append({"imei": raw, "reason": f"ALREADY_{line.status}"})
            continue

        changed = compare_and_set(
            DsrAssignmentUnit,
            where={"id": line.id, "status": LINE_ASSIGNED},
            values={"status": LINE_RETURNED, "returned_at": now, "return_notes": notes},
        )
        if not changed:
            current_app.logger.warning("Phone %s was resolved concurrently, not returned", raw)
            result.skipped.append({"imei": raw, "reason": "ALREADY_RESOLVED"})
            continue

        try:
            ledger_service.return_to_stock(raw, returned_at=now, return_notes=notes)
        except PhoneStockError:
            db.session.rollback()
            raise
        result.returned.append(raw)

    if result.returned:
        assignment.returned_at = now
        assignment.returned_by_user_id = actor.user_id
        assignment.return_notes = notes
        schedule_service.record_returns(assignment.schedule_id, len(result.returned))
    assignment.updated_by_user_id = actor.user_id
    recalculate_totals(assignment)
    db.session.commit()

    current_app.logger.info(
        "%s phones returned from assignment %s (%s skipped)",
        len(result.returned), assignment.assignment_number, len(result.skipped),
    )
    return result


def list_assignments(
    *,
    actor: Principal | None = None,
    agent_id: int | None = None,
    status: str | None = None,
    start_date=None,
    end_date=None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """DSR principals only ever see their own assignments."""
    query = db.session.query(DsrAssignment)
    if actor is not None and actor.is_dsr:
        agent_id = actor.user_id
    if agent_id is not None:
        query = query.filter(DsrAssignment.agent_id == agent_id)
    if status:
        query = query.filter(DsrAssignment.status == status.upper())
    start = validate_date(start_date, "start_date")
    end = validate_date(end_date, "end_date")
    if start:
        query = query.filter(DsrAssignment.assignment_date >= start)
    if end:
        query = query.filter(DsrAssignment.assignment_date <= end)

    total = query.count()
    limit = max(1, min(limit or 50, 200))
    items = (
        query.order_by(DsrAssignment.assignment_date.desc(), DsrAssignment.id.desc())
        .offset(max(offset or 0, 0))
        .limit(limit)
        .all()
    )
    return {"items": items, "total": total, "limit": limit, "offset": offset}


def daily_summary(day=None, *, now: datetime | None = None) -> dict:
    """Per-agent rows and totals for one business day (report/export input)."""
    target = validate_date(day, "date") or business_today(now)
    assignments = (
        db.session.query(DsrAssignment)
        .filter(DsrAssignment.assignment_date == target)
        .order_by(DsrAssignment.assignment_number.asc())
        .all()
    )
    rows = []
    for a in assignments:
        rows.append({
            "assignment_number": a.assignment_number,
            "agent_id": a.agent_id,
            "agent_name": a.agent.full_name if a.agent else None,
            "agent_phone": a.agent.phone if a.agent else None,
            "total_units": a.total_units,
            "assigned": a.assigned_units,
            "sold": a.sold_units,
            "returned": a.returned_units,
            "total_value_cents": a.total_value_cents,
            "sold_revenue_cents": a.sold_revenue_cents,
            "profit_cents": a.profit_cents,
            "status": a.status,
        })
    return {
        "date": target.isoformat(),
        "rows": rows,
        "totals": {
            "assignments": len(rows),
            "total_units": sum(r["total_units"] for r in rows),
            "sold": sum(r["sold"] for r in rows),
            "returned": sum(r["returned"] for r in rows),
            "total_value_cents": sum(r["total_value_cents"] for r in rows),
            "sold_revenue_cents": sum(r["sold_revenue_cents"] for r in rows),
            "profit_cents": sum(r["profit_cents"] for r in rows),
        },
    }
