from __future__ import annotations

from ..extensions import db
from phonestock.time_utils import to_utc_z, to_iso_date, parse_hhmm


class DsrSchedule(db.Model):
    """
    One field agent's record for one business calendar day.

    UNIQUENESS: (agent_id, schedule_date) is unique. Creation races are settled
    by the index; the loser re-reads the winner's row.

    ASSIGNMENT: assignment_id is a weak, lookup-only back-reference with its
    own unique index. It is claimed with a conditional update
    (assignment_id IS NULL), so a schedule can hold at most one assignment.

    STATUS: SCHEDULED, CHECKED_IN, PRESENT, LATE, ABSENT, ON_LEAVE, HOLIDAY, CANCELLED

    PERFORMANCE: units/revenue/profit counters are incremented in SQL
    (col = col + n) in the same transaction as the assignment outcome.
    """
    __tablename__ = "dsr_schedules"
    __table_args__ = (
        db.UniqueConstraint("agent_id", "schedule_date", name="uq_dsr_schedules_agent_date"),
        db.Index("ix_dsr_schedules_date_type", "schedule_date", "schedule_type"),
        db.Index("ix_dsr_schedules_agent_year_month", "agent_id", "year", "month"),
        db.Index("ix_dsr_schedules_status_date", "status", "schedule_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Business-timezone calendar day
    schedule_date = db.Column(db.Date, nullable=False)
    day_of_week = db.Column(db.String(9), nullable=False)
    iso_week = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)

    # WORKDAY, DAY_OFF, VACATION, SICK_LEAVE, EMERGENCY, HOLIDAY, PERSONAL_LEAVE, UNPAID_LEAVE
    schedule_type = db.Column(db.String(16), nullable=False, default="WORKDAY")

    status = db.Column(db.String(16), nullable=False, default="SCHEDULED")

    assignment_id = db.Column(db.Integer, nullable=True, unique=True)

    # Attendance
    check_in_at = db.Column(db.DateTime(timezone=True), nullable=True)
    check_out_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_work_minutes = db.Column(db.Integer, nullable=True)
    is_late = db.Column(db.Boolean, nullable=False, default=False)
    late_by_minutes = db.Column(db.Integer, nullable=True)

    # Leave (approved by the staff member who records it)
    leave_type = db.Column(db.String(16), nullable=True)
    leave_reason = db.Column(db.Text, nullable=True)
    leave_requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    leave_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    leave_approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    leave_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Performance counters
    units_assigned = db.Column(db.Integer, nullable=False, default=0)
    units_sold = db.Column(db.Integer, nullable=False, default=0)
    units_returned = db.Column(db.Integer, nullable=False, default=0)
    revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shifts = db.relationship(
        "DsrShift",
        back_populates="schedule",
        order_by="DsrShift.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    agent = db.relationship("User", foreign_keys=[agent_id])

    @property
    def total_shift_minutes(self) -> int:
        return sum(shift.duration_minutes for shift in self.shifts)

    @property
    def is_work_day(self) -> bool:
        return self.schedule_type == "WORKDAY" and self.status in ("SCHEDULED", "CHECKED_IN", "PRESENT", "LATE")

    @property
    def can_check_in(self) -> bool:
        return self.schedule_type == "WORKDAY" and self.status == "SCHEDULED"

    def __repr__(self) -> str:
        return f"<DsrSchedule agent={self.agent_id} date={self.schedule_date} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "date": to_iso_date(self.schedule_date),
            "day_of_week": self.day_of_week,
            "iso_week": self.iso_week,
            "month": self.month,
            "year": self.year,
            "schedule_type": self.schedule_type,
            "status": self.status,
            "shifts": [s.to_dict() for s in self.shifts],
            "total_shift_minutes": self.total_shift_minutes,
            "assignment_id": self.assignment_id,
            "has_assignment": self.assignment_id is not None,
            "attendance": {
                "check_in_at": to_utc_z(self.check_in_at),
                "check_out_at": to_utc_z(self.check_out_at),
                "actual_work_minutes": self.actual_work_minutes,
                "is_late": self.is_late,
                "late_by_minutes": self.late_by_minutes,
            },
            "leave": {
                "leave_type": self.leave_type,
                "reason": self.leave_reason,
                "requested_by_user_id": self.leave_requested_by_user_id,
                "requested_at": to_utc_z(self.leave_requested_at),
                "approved_by_user_id": self.leave_approved_by_user_id,
                "approved_at": to_utc_z(self.leave_approved_at),
            } if self.leave_type else None,
            "performance": {
                "units_assigned": self.units_assigned,
                "units_sold": self.units_sold,
                "units_returned": self.units_returned,
                "revenue_cents": self.revenue_cents,
                "profit_cents": self.profit_cents,
            },
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DsrShift(db.Model):
    """Work window inside a schedule day. Times are business-local HH:MM."""
    __tablename__ = "dsr_shifts"
    __table_args__ = (
        db.Index("ix_dsr_shifts_schedule", "schedule_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey("dsr_schedules.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    start_time = db.Column(db.String(5), nullable=False)
    end_time = db.Column(db.String(5), nullable=False)
    shift_name = db.Column(db.String(64), nullable=True)
    break_start = db.Column(db.String(5), nullable=True)
    break_end = db.Column(db.String(5), nullable=True)

    schedule = db.relationship("DsrSchedule", back_populates="shifts")

    @property
    def duration_minutes(self) -> int:
        start = parse_hhmm(self.start_time)
        end = parse_hhmm(self.end_time)
        minutes = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
        if self.break_start and self.break_end:
            b_start = parse_hhmm(self.break_start)
            b_end = parse_hhmm(self.break_end)
            minutes -= (b_end.hour * 60 + b_end.minute) - (b_start.hour * 60 + b_start.minute)
        return minutes

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "shift_name": self.shift_name,
            "break_start": self.break_start,
            "break_end": self.break_end,
            "duration_minutes": self.duration_minutes,
        }
