# Overview: Service-layer operations for DSR schedules and attendance; encapsulates business logic.

"""
Schedule & Attendance Service

WHY: Each field agent has at most one schedule record per business day. The
record carries shifts, attendance, leave and the day's sales performance,
and is the anchor an assignment attaches to.

BUSINESS DAY: Dates, shift times and lateness are evaluated in the business
timezone (BUSINESS_TIMEZONE), never in server-local time.

STATUS:
- SCHEDULED -> CHECKED_IN | LATE (check_in) -> PRESENT (check_out)
- SCHEDULED -> ABSENT (mark_absent)
- any day without an assignment -> ON_LEAVE (request_leave)

LEAVE: Leave is recorded by staff and approved by that same act; there is no
pending-approval state.

COUNTERS: Performance counters are incremented in SQL inside the caller's
transaction (record_* helpers), never recomputed from a stale read.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DsrSchedule, DsrShift
from ..errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..time_utils import (
    business_local_to_utc,
    business_today,
    iter_days,
    parse_hhmm,
    parse_iso_date,
    utcnow,
)
from .concurrency import commit_or_conflict, compare_and_set, increment
from . import auth_service
from .auth_service import Principal


TYPE_WORKDAY = "WORKDAY"
SCHEDULE_TYPES = (
    "WORKDAY", "DAY_OFF", "VACATION", "SICK_LEAVE", "EMERGENCY",
    "HOLIDAY", "PERSONAL_LEAVE", "UNPAID_LEAVE",
)

STATUS_SCHEDULED = "SCHEDULED"
STATUS_CHECKED_IN = "CHECKED_IN"
STATUS_PRESENT = "PRESENT"
STATUS_LATE = "LATE"
STATUS_ABSENT = "ABSENT"
STATUS_ON_LEAVE = "ON_LEAVE"
STATUS_HOLIDAY = "HOLIDAY"
STATUS_CANCELLED = "CANCELLED"

# A schedule in one of these states cannot take an assignment
NON_WORKING_STATUSES = (STATUS_ABSENT, STATUS_ON_LEAVE, STATUS_HOLIDAY, STATUS_CANCELLED)

LEAVE_TYPE_TO_SCHEDULE_TYPE = {
    "ANNUAL": "VACATION",
    "SICK": "SICK_LEAVE",
    "EMERGENCY": "EMERGENCY",
    "PERSONAL": "PERSONAL_LEAVE",
    "UNPAID": "UNPAID_LEAVE",
}

WEEKDAYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

MAX_RANGE_DAYS = 366


# =============================================================================
# Helpers
# =============================================================================

def _coerce_day(value, field: str = "date") -> date:
    try:
        day = parse_iso_date(value)
    except ValueError:
        day = None
    if day is None:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", field=field)
    return day


def _coerce_range(start, end) -> tuple[date, date]:
    start_day = _coerce_day(start, "start_date")
    end_day = _coerce_day(end, "end_date")
    if end_day < start_day:
        raise ValidationError("end_date must be on or after start_date")
    if (end_day - start_day).days >= MAX_RANGE_DAYS:
        raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")
    return start_day, end_day


def _default_shifts() -> list[dict]:
    cfg = current_app.config
    return [{
        "start_time": cfg["DEFAULT_SHIFT_START"],
        "end_time": cfg["DEFAULT_SHIFT_END"],
        "shift_name": "Default Shift",
    }]


def _build_shifts(shifts: list[dict] | None) -> list[DsrShift]:
    built = []
    for position, data in enumerate(shifts or []):
        try:
            start = parse_hhmm(data["start_time"])
            end = parse_hhmm(data["end_time"])
            break_start = parse_hhmm(data["break_start"]) if data.get("break_start") else None
            break_end = parse_hhmm(data["break_end"]) if data.get("break_end") else None
        except (KeyError, ValueError, AttributeError, TypeError):
            raise ValidationError("Shift times must be HH:MM", position=position)
        if end <= start:
            raise ValidationError("Shift end_time must be after start_time", position=position)
        if (break_start is None) != (break_end is None):
            raise ValidationError("Break needs both break_start and break_end", position=position)
        if break_start and not (start <= break_start < break_end <= end):
            raise ValidationError("Break must fall inside the shift", position=position)
        built.append(DsrShift(
            position=position,
            start_time=start.strftime("%H:%M"),
            end_time=end.strftime("%H:%M"),
            shift_name=data.get("shift_name"),
            break_start=break_start.strftime("%H:%M") if break_start else None,
            break_end=break_end.strftime("%H:%M") if break_end else None,
        ))
    return built


def _new_schedule(agent_id: int, day: date, *, schedule_type: str, created_by_user_id: int, **fields) -> DsrSchedule:
    return DsrSchedule(
        agent_id=agent_id,
        schedule_date=day,
        day_of_week=day.strftime("%A"),
        iso_week=day.isocalendar()[1],
        month=day.month,
        year=day.year,
        schedule_type=schedule_type,
        status=STATUS_SCHEDULED,
        created_by_user_id=created_by_user_id,
        **fields,
    )


def _validate_type(schedule_type: str) -> str:
    schedule_type = (schedule_type or TYPE_WORKDAY).upper()
    if schedule_type not in SCHEDULE_TYPES:
        raise ValidationError(f"Invalid schedule_type: {schedule_type}")
    return schedule_type


# =============================================================================
# Lookups
# =============================================================================

def get_schedule(schedule_id: int) -> DsrSchedule:
    schedule = db.session.get(DsrSchedule, schedule_id)
    if not schedule:
        raise NotFoundError(f"Schedule {schedule_id} not found", schedule_id=schedule_id)
    return schedule


def find_schedule(agent_id: int, day) -> DsrSchedule | None:
    return (
        db.session.query(DsrSchedule)
        .filter_by(agent_id=agent_id, schedule_date=_coerce_day(day))
        .first()
    )


def get_schedule_for_day(agent_id: int, day) -> DsrSchedule:
    schedule = find_schedule(agent_id, day)
    if not schedule:
        raise NotFoundError("Schedule not found for this date", agent_id=agent_id, date=str(day))
    return schedule


# =============================================================================
# Creation
# =============================================================================

def ensure_schedule(agent_id: int, day, *, created_by_user_id: int) -> DsrSchedule:
    """
    Return the agent's schedule for `day`, creating a default WORKDAY if none.

    Idempotent. Concurrent callers race on the (agent, day) unique index;
    the loser re-reads the winner's row. Commits only when it creates.
    """
    day = _coerce_day(day)
    existing = find_schedule(agent_id, day)
    if existing:
        return existing

    schedule = _new_schedule(
        agent_id,
        day,
        schedule_type=TYPE_WORKDAY,
        created_by_user_id=created_by_user_id,
        notes="Auto-created for assignment",
    )
    schedule.shifts = _build_shifts(_default_shifts())
    db.session.add(schedule)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = find_schedule(agent_id, day)
        if existing is None:
            raise
        return existing

    current_app.logger.info("Schedule auto-created for agent %s on %s", agent_id, day.isoformat())
    return schedule


def require_assignable(schedule: DsrSchedule) -> None:
    """An assignment needs a working day: WORKDAY, not absent, on leave or cancelled."""
    if schedule.schedule_type != TYPE_WORKDAY or schedule.status in NON_WORKING_STATUSES:
        raise InvalidTransitionError(
            f"Cannot assign on a {schedule.schedule_type} day with status {schedule.status}",
            schedule_id=schedule.id,
            schedule_type=schedule.schedule_type,
            status=schedule.status,
        )


def create_schedule(
    *,
    agent_id: int,
    day,
    created_by_user_id: int,
    schedule_type: str = TYPE_WORKDAY,
    shifts: list[dict] | None = None,
    notes: str | None = None,
) -> DsrSchedule:
    auth_service.get_active_agent(agent_id)
    day = _coerce_day(day)
    schedule_type = _validate_type(schedule_type)

    if find_schedule(agent_id, day):
        raise ConflictError(
            f"Schedule already exists for {day.isoformat()}",
            agent_id=agent_id,
            date=day.isoformat(),
        )

    schedule = _new_schedule(
        agent_id, day,
        schedule_type=schedule_type,
        created_by_user_id=created_by_user_id,
        notes=notes,
    )
    schedule.shifts = _build_shifts(shifts)
    db.session.add(schedule)
    commit_or_conflict(
        f"Schedule already exists for {day.isoformat()}",
        agent_id=agent_id,
        date=day.isoformat(),
    )

    current_app.logger.info("Schedule created for agent %s on %s", agent_id, day.isoformat())
    return schedule


def bulk_create_schedules(
    *,
    agent_id: int,
    start_date,
    end_date,
    work_days: list[str],
    created_by_user_id: int,
    shifts: list[dict] | None = None,
    notes: str | None = None,
) -> list[DsrSchedule]:
    """
    Create WORKDAY schedules on the listed weekdays of a date range.

    Days that already have a schedule are skipped. Raises ConflictError when
    every matching day already has one.
    """
    auth_service.get_active_agent(agent_id)
    start, end = _coerce_range(start_date, end_date)
    wanted = {str(d).strip().upper() for d in (work_days or [])}
    unknown = wanted - set(WEEKDAYS)
    if not wanted or unknown:
        raise ValidationError("work_days must list weekday names", work_days=", ".join(sorted(unknown)) or None)

    existing_days = {
        row.schedule_date
        for row in db.session.query(DsrSchedule.schedule_date).filter(
            DsrSchedule.agent_id == agent_id,
            DsrSchedule.schedule_date >= start,
            DsrSchedule.schedule_date <= end,
        )
    }

    created = []
    for day in iter_days(start, end):
        if day.strftime("%A").upper() not in wanted or day in existing_days:
            continue
        schedule = _new_schedule(
            agent_id, day,
            schedule_type=TYPE_WORKDAY,
            created_by_user_id=created_by_user_id,
            notes=notes,
        )
        schedule.shifts = _build_shifts(shifts if shifts is not None else _default_shifts())
        db.session.add(schedule)
        created.append(schedule)

    if not created:
        raise ConflictError(
            "No new schedules to create. All dates already have schedules.",
            agent_id=agent_id,
        )

    commit_or_conflict("A schedule in this range was created concurrently", agent_id=agent_id)
    current_app.logger.info(
        "Bulk schedules created for agent %s: %s days (%s to %s)",
        agent_id, len(created), start.isoformat(), end.isoformat(),
    )
    return created


def update_schedule(schedule_id: int, *, patch: dict, updated_by_user_id: int) -> DsrSchedule:
    schedule = get_schedule(schedule_id)
    allowed = {"schedule_type", "shifts", "notes", "admin_notes"}
    unknown = set(patch or {}) - allowed
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}", schedule_id=schedule_id)

    if "schedule_type" in patch:
        new_type = _validate_type(patch["schedule_type"])
        if new_type != TYPE_WORKDAY and schedule.assignment_id is not None:
            raise ConflictError(
                "Cannot change the type of a schedule that has an assignment",
                schedule_id=schedule.id,
                assignment_id=schedule.assignment_id,
            )
        schedule.schedule_type = new_type
    if "shifts" in patch:
        schedule.shifts = _build_shifts(patch["shifts"])
    if "notes" in patch:
        schedule.notes = patch["notes"]
    if "admin_notes" in patch:
        schedule.admin_notes = patch["admin_notes"]

    schedule.updated_by_user_id = updated_by_user_id
    db.session.commit()
    current_app.logger.info("Schedule %s updated", schedule.id)
    return schedule


def delete_schedule(schedule_id: int) -> None:
    """Delete a schedule that holds no assignment."""
    schedule = get_schedule(schedule_id)
    db.session.execute(delete(DsrShift).where(DsrShift.schedule_id == schedule.id))
    result = db.session.execute(
        delete(DsrSchedule)
        .where(DsrSchedule.id == schedule.id, DsrSchedule.assignment_id.is_(None))
        .execution_options(synchronize_session="fetch")
    )
    if not result.rowcount:
        db.session.rollback()
        raise ConflictError(
            "Cannot delete schedule with existing assignment",
            schedule_id=schedule_id,
        )
    db.session.commit()
    current_app.logger.info("Schedule %s deleted", schedule_id)


# =============================================================================
# Assignment linkage and counters (caller owns the transaction)
# =============================================================================

def claim_for_assignment(schedule: DsrSchedule, assignment_id: int, units: int) -> None:
    """Link an assignment to the schedule. Fails if one is already linked."""
    changed = compare_and_set(
        DsrSchedule,
        where={"id": schedule.id, "assignment_id": None},
        values={"assignment_id": assignment_id},
    )
    if not changed:
        raise ConflictError(
            "DSR already has an assignment for this date",
            schedule_id=schedule.id,
            agent_id=schedule.agent_id,
        )
    increment(DsrSchedule, schedule.id, units_assigned=units)


def record_sale(schedule_id: int | None, *, revenue_cents: int, profit_cents: int) -> None:
    if schedule_id is None:
        return
    increment(DsrSchedule, schedule_id, units_sold=1, revenue_cents=revenue_cents, profit_cents=profit_cents)


def record_returns(schedule_id: int | None, count: int) -> None:
    if schedule_id is None:
        return
    increment(DsrSchedule, schedule_id, units_returned=count)


# =============================================================================
# Attendance
# =============================================================================

def check_in(schedule_id: int, *, actor: Principal, now: datetime | None = None) -> DsrSchedule:
    """
    Record arrival. Only on the schedule's own business day, only once.

    Late when `now` is after the first shift's start; status becomes LATE
    with late_by_minutes, otherwise CHECKED_IN.
    """
    schedule = get_schedule(schedule_id)
    auth_service.require_self_or_staff(actor, schedule.agent_id, schedule_id=schedule.id)

    now = now or utcnow()
    today = business_today(now)
    if schedule.schedule_date > today:
        raise InvalidTransitionError(
            "Cannot check-in for future schedules",
            schedule_id=schedule.id,
            date=schedule.schedule_date.isoformat(),
        )
    if schedule.schedule_date < today:
        raise InvalidTransitionError(
            "Cannot check-in for past schedules",
            schedule_id=schedule.id,
            date=schedule.schedule_date.isoformat(),
        )

    values = {
        "check_in_at": now,
        "status": STATUS_CHECKED_IN,
        "is_late": False,
        "late_by_minutes": None,
    }
    if schedule.shifts:
        start_utc = business_local_to_utc(schedule.schedule_date, parse_hhmm(schedule.shifts[0].start_time))
        if now > start_utc:
            values["is_late"] = True
            values["late_by_minutes"] = int((now - start_utc).total_seconds() // 60)
            values["status"] = STATUS_LATE

    changed = compare_and_set(
        DsrSchedule,
        where={"id": schedule.id, "status": STATUS_SCHEDULED, "schedule_type": TYPE_WORKDAY},
        values=values,
    )
    if not changed:
        db.session.rollback()
        schedule = get_schedule(schedule_id)
        raise InvalidTransitionError(
            f"Cannot check-in. Current status: {schedule.status}",
            schedule_id=schedule.id,
            status=schedule.status,
            schedule_type=schedule.schedule_type,
        )

    db.session.commit()
    current_app.logger.info(
        "Agent %s checked in for %s%s",
        schedule.agent_id,
        schedule.schedule_date.isoformat(),
        f" ({values['late_by_minutes']} min late)" if values["is_late"] else "",
    )
    return schedule


def check_out(schedule_id: int, *, actor: Principal, now: datetime | None = None) -> DsrSchedule:
    """Record departure; computes worked minutes and marks the day PRESENT."""
    schedule = get_schedule(schedule_id)
    auth_service.require_self_or_staff(actor, schedule.agent_id, schedule_id=schedule.id)

    if schedule.check_in_at is None:
        raise InvalidTransitionError(
            "Cannot check-out without checking in first",
            schedule_id=schedule.id,
        )
    if schedule.check_out_at is not None:
        raise InvalidTransitionError("Already checked out", schedule_id=schedule.id)

    now = now or utcnow()
    if now < schedule.check_in_at:
        raise ValidationError("Check-out cannot be before check-in", schedule_id=schedule.id)
    worked = int((now - schedule.check_in_at).total_seconds() // 60)

    changed = compare_and_set(
        DsrSchedule,
        where={"id": schedule.id, "check_out_at": None},
        values={"check_out_at": now, "actual_work_minutes": worked, "status": STATUS_PRESENT},
        extra_criteria=(DsrSchedule.check_in_at.isnot(None),),
    )
    if not changed:
        db.session.rollback()
        raise InvalidTransitionError("Already checked out", schedule_id=schedule_id)

    db.session.commit()
    current_app.logger.info(
        "Agent %s checked out for %s (%s min)",
        schedule.agent_id, schedule.schedule_date.isoformat(), worked,
    )
    return schedule


def mark_absent(schedule_id: int, *, notes: str | None = None, updated_by_user_id: int | None = None) -> DsrSchedule:
    schedule = get_schedule(schedule_id)
    if schedule.check_in_at is not None:
        raise InvalidTransitionError(
            "Cannot mark absent after check-in",
            schedule_id=schedule.id,
            status=schedule.status,
        )
    schedule.status = STATUS_ABSENT
    if notes:
        schedule.admin_notes = notes
    schedule.updated_by_user_id = updated_by_user_id
    db.session.commit()

    current_app.logger.info("Agent %s marked absent on %s", schedule.agent_id, schedule.schedule_date.isoformat())
    return schedule


def request_leave(
    *,
    agent_id: int,
    start_date,
    end_date,
    leave_type: str,
    requested_by_user_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> list[DsrSchedule]:
    """
    Mark every day in [start_date, end_date] as leave for the agent.

    Days without a schedule are created; existing days are overwritten with
    the leave type and ON_LEAVE. Recording the leave approves it. A day that
    already holds an assignment is refused with ConflictError, and nothing
    is written.
    """
    auth_service.get_active_agent(agent_id)
    start, end = _coerce_range(start_date, end_date)
    leave_type = (leave_type or "").upper()
    if leave_type not in LEAVE_TYPE_TO_SCHEDULE_TYPE:
        raise ValidationError(
            f"Invalid leave_type: {leave_type}",
            allowed=", ".join(LEAVE_TYPE_TO_SCHEDULE_TYPE),
        )
    schedule_type = LEAVE_TYPE_TO_SCHEDULE_TYPE[leave_type]
    now = now or utcnow()

    existing = {
        s.schedule_date: s
        for s in db.session.query(DsrSchedule).filter(
            DsrSchedule.agent_id == agent_id,
            DsrSchedule.schedule_date >= start,
            DsrSchedule.schedule_date <= end,
        )
    }
    for schedule in existing.values():
        if schedule.assignment_id is not None:
            raise ConflictError(
                f"Cannot mark leave on {schedule.schedule_date.isoformat()}: an assignment exists",
                schedule_id=schedule.id,
                assignment_id=schedule.assignment_id,
            )

    leave_fields = {
        "leave_type": leave_type,
        "leave_reason": reason,
        "leave_requested_by_user_id": requested_by_user_id,
        "leave_requested_at": now,
        "leave_approved_by_user_id": requested_by_user_id,
        "leave_approved_at": now,
    }

    schedules = []
    for day in iter_days(start, end):
        schedule = existing.get(day)
        if schedule is None:
            schedule = _new_schedule(
                agent_id, day,
                schedule_type=schedule_type,
                created_by_user_id=requested_by_user_id,
            )
            db.session.add(schedule)
        else:
            schedule.schedule_type = schedule_type
            schedule.updated_by_user_id = requested_by_user_id
            schedule.shifts = []
        schedule.status = STATUS_ON_LEAVE
        for key, value in leave_fields.items():
            setattr(schedule, key, value)
        schedules.append(schedule)

    # Claiming takes assignment_id IS NULL; re-check under the same transaction
    claimed = (
        db.session.query(DsrSchedule.id)
        .filter(
            DsrSchedule.agent_id == agent_id,
            DsrSchedule.schedule_date >= start,
            DsrSchedule.schedule_date <= end,
            DsrSchedule.assignment_id.isnot(None),
        )
        .first()
    )
    if claimed:
        db.session.rollback()
        raise ConflictError("Cannot mark leave: an assignment exists in this range", schedule_id=claimed.id)

    commit_or_conflict("A schedule in this range was created concurrently", agent_id=agent_id)
    current_app.logger.info(
        "Leave (%s) marked for agent %s: %s days from %s to %s",
        leave_type, agent_id, len(schedules), start.isoformat(), end.isoformat(),
    )
    return schedules


# =============================================================================
# Reports
# =============================================================================

def _summarize(schedules: list[DsrSchedule]) -> dict:
    return {
        "total_days": len(schedules),
        "work_days": sum(1 for s in schedules if s.schedule_type == TYPE_WORKDAY),
        "present_days": sum(1 for s in schedules if s.status == STATUS_PRESENT),
        "absent_days": sum(1 for s in schedules if s.status == STATUS_ABSENT),
        "late_days": sum(1 for s in schedules if s.is_late),
        "leave_days": sum(1 for s in schedules if s.status == STATUS_ON_LEAVE),
        "total_revenue_cents": sum(s.revenue_cents or 0 for s in schedules),
        "total_profit_cents": sum(s.profit_cents or 0 for s in schedules),
        "units_assigned": sum(s.units_assigned or 0 for s in schedules),
        "units_sold": sum(s.units_sold or 0 for s in schedules),
        "units_returned": sum(s.units_returned or 0 for s in schedules),
    }


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12", month=month)
    first = date(year, month, 1)
    next_first = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return first, next_first - timedelta(days=1)


def _schedules_between(agent_id: int, start: date, end: date) -> list[DsrSchedule]:
    return (
        db.session.query(DsrSchedule)
        .filter(
            DsrSchedule.agent_id == agent_id,
            DsrSchedule.schedule_date >= start,
            DsrSchedule.schedule_date <= end,
        )
        .order_by(DsrSchedule.schedule_date.asc())
        .all()
    )


def calendar(agent_id: int, *, year: int | None = None, month: int | None = None, now: datetime | None = None) -> dict:
    """One agent's month of schedules (defaults to the current business month)."""
    agent = auth_service.get_user(agent_id)
    today = business_today(now)
    first, last = _month_bounds(year or today.year, month or today.month)
    schedules = _schedules_between(agent_id, first, last)
    return {
        "agent": {"id": agent.id, "name": agent.full_name, "email": agent.email, "phone": agent.phone},
        "start": first.isoformat(),
        "end": last.isoformat(),
        "schedules": [s.to_dict() for s in schedules],
        "summary": _summarize(schedules),
    }


def monthly_report(agent_id: int, *, year: int, month: int) -> dict:
    agent = auth_service.get_user(agent_id)
    first, last = _month_bounds(year, month)
    schedules = _schedules_between(agent_id, first, last)
    return {
        "agent": {"id": agent.id, "name": agent.full_name, "email": agent.email},
        "summary": {"year": year, "month": month, **_summarize(schedules)},
        "schedules": [s.to_dict() for s in schedules],
    }


def team_calendar(day=None, *, now: datetime | None = None) -> dict:
    """Every agent's schedule for one business day."""
    target = _coerce_day(day) if day is not None else business_today(now)
    schedules = (
        db.session.query(DsrSchedule)
        .filter(DsrSchedule.schedule_date == target)
        .order_by(DsrSchedule.agent_id.asc())
        .all()
    )
    return {
        "date": target.isoformat(),
        "total_agents": len(schedules),
        "schedules": [
            {**s.to_dict(), "agent_name": s.agent.full_name if s.agent else None}
            for s in schedules
        ],
    }
