"""
Schedule and attendance tests.

Verifies:
- One schedule per agent per business day
- Check-in only on the schedule's own day; lateness measured in business time
- Check-out computes worked minutes
- Leave overwrites days without assignments and is refused otherwise
- Monthly and team reports
"""

from datetime import date, datetime

import pytest

from phonestock.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from phonestock.extensions import db
from phonestock.models import DsrSchedule
from phonestock.services import assignment_service, schedule_service
from phonestock.services.auth_service import Principal

from conftest import IMEI_1, NOW, TODAY


@pytest.fixture
def workday(owner, dsr):
    return schedule_service.create_schedule(
        agent_id=dsr.id,
        day=TODAY,
        created_by_user_id=owner.id,
        shifts=[{"start_time": "08:00", "end_time": "17:00", "break_start": "12:00", "break_end": "13:00"}],
    )


class TestCreateSchedules:

    def test_create_sets_day_metadata(self, workday):
        assert workday.day_of_week == "Sunday"
        assert workday.month == 10
        assert workday.year == 2026
        assert workday.status == schedule_service.STATUS_SCHEDULED
        assert workday.total_shift_minutes == 480

    def test_duplicate_day_conflicts(self, workday, owner, dsr):
        with pytest.raises(ConflictError):
            schedule_service.create_schedule(agent_id=dsr.id, day=TODAY, created_by_user_id=owner.id)

    def test_ensure_is_idempotent(self, owner, dsr):
        first = schedule_service.ensure_schedule(dsr.id, TODAY, created_by_user_id=owner.id)
        second = schedule_service.ensure_schedule(dsr.id, "2026-10-18", created_by_user_id=owner.id)

        assert first.id == second.id
        assert db.session.query(DsrSchedule).count() == 1
        assert [s.start_time for s in first.shifts] == ["08:00"]

    @pytest.mark.parametrize("shift", [
        {"start_time": "17:00", "end_time": "08:00"},
        {"start_time": "8am", "end_time": "17:00"},
        {"start_time": "08:00", "end_time": "17:00", "break_start": "12:00"},
        {"start_time": "08:00", "end_time": "17:00", "break_start": "18:00", "break_end": "19:00"},
    ])
    def test_invalid_shifts(self, owner, dsr, shift):
        with pytest.raises(ValidationError):
            schedule_service.create_schedule(
                agent_id=dsr.id, day=TODAY, created_by_user_id=owner.id, shifts=[shift],
            )

    def test_bulk_create_skips_existing(self, workday, owner, dsr):
        created = schedule_service.bulk_create_schedules(
            agent_id=dsr.id,
            start_date="2026-10-12",
            end_date="2026-10-25",
            work_days=["monday", "sunday"],
            created_by_user_id=owner.id,
        )
        # Mondays 12th and 19th, Sundays 25th (18th already exists)
        assert sorted(s.schedule_date.day for s in created) == [12, 19, 25]

    def test_bulk_create_all_existing(self, workday, owner, dsr):
        with pytest.raises(ConflictError, match="No new schedules"):
            schedule_service.bulk_create_schedules(
                agent_id=dsr.id,
                start_date=TODAY,
                end_date=TODAY,
                work_days=["SUNDAY"],
                created_by_user_id=owner.id,
            )

    def test_bad_range(self, owner, dsr):
        with pytest.raises(ValidationError):
            schedule_service.bulk_create_schedules(
                agent_id=dsr.id,
                start_date="2026-10-20",
                end_date="2026-10-18",
                work_days=["MONDAY"],
                created_by_user_id=owner.id,
            )

    def test_delete_refused_with_assignment(self, verified_invoice, workday, owner, dsr):
        verified_invoice()
        assignment_service.create_assignment(
            agent_id=dsr.id, units=[IMEI_1], assigned_by_user_id=owner.id, day=TODAY, now=NOW,
        )
        with pytest.raises(ConflictError):
            schedule_service.delete_schedule(workday.id)
        assert schedule_service.get_schedule(workday.id) is not None

    def test_delete_free_schedule(self, workday):
        schedule_id = workday.id
        schedule_service.delete_schedule(schedule_id)
        with pytest.raises(NotFoundError):
            schedule_service.get_schedule(schedule_id)


class TestAttendance:

    def test_on_time_check_in(self, workday, dsr_principal):
        # 02:00 UTC is 07:30 in Colombo; shift starts 08:00
        schedule = schedule_service.check_in(workday.id, actor=dsr_principal, now=NOW)

        assert schedule.status == schedule_service.STATUS_CHECKED_IN
        assert schedule.is_late is False
        assert schedule.check_in_at == NOW

    def test_late_check_in(self, workday, dsr_principal):
        # 04:00 UTC is 09:30 in Colombo
        schedule = schedule_service.check_in(workday.id, actor=dsr_principal, now=datetime(2026, 10, 18, 4, 0))

        assert schedule.status == schedule_service.STATUS_LATE
        assert schedule.is_late is True
        assert schedule.late_by_minutes == 90

    def test_check_in_once(self, workday, dsr_principal):
        schedule_service.check_in(workday.id, actor=dsr_principal, now=NOW)
        with pytest.raises(InvalidTransitionError, match="CHECKED_IN"):
            schedule_service.check_in(workday.id, actor=dsr_principal, now=NOW)

    def test_future_day_refused(self, workday, dsr_principal):
        with pytest.raises(InvalidTransitionError, match="future"):
            schedule_service.check_in(workday.id, actor=dsr_principal, now=datetime(2026, 10, 17, 10, 0))

    def test_past_day_refused(self, workday, dsr_principal):
        with pytest.raises(InvalidTransitionError, match="past"):
            schedule_service.check_in(workday.id, actor=dsr_principal, now=datetime(2026, 10, 19, 3, 0))

    def test_other_agent_cannot_check_in(self, workday, other_dsr):
        intruder = Principal(user_id=other_dsr.id, role="dsr")
        with pytest.raises(AuthorizationError):
            schedule_service.check_in(workday.id, actor=intruder, now=NOW)

    def test_check_out_computes_minutes(self, workday, dsr_principal):
        schedule_service.check_in(workday.id, actor=dsr_principal, now=NOW)
        schedule = schedule_service.check_out(
            workday.id, actor=dsr_principal, now=datetime(2026, 10, 18, 11, 45),
        )

        assert schedule.status == schedule_service.STATUS_PRESENT
        assert schedule.actual_work_minutes == 585

    def test_check_out_requires_check_in(self, workday, dsr_principal):
        with pytest.raises(InvalidTransitionError, match="checking in"):
            schedule_service.check_out(workday.id, actor=dsr_principal, now=NOW)

    def test_check_out_once(self, workday, dsr_principal):
        schedule_service.check_in(workday.id, actor=dsr_principal, now=NOW)
        schedule_service.check_out(workday.id, actor=dsr_principal, now=datetime(2026, 10, 18, 11, 0))
        with pytest.raises(InvalidTransitionError, match="Already"):
            schedule_service.check_out(workday.id, actor=dsr_principal, now=datetime(2026, 10, 18, 12, 0))

    def test_mark_absent(self, workday, owner):
        schedule = schedule_service.mark_absent(workday.id, notes="no show", updated_by_user_id=owner.id)
        assert schedule.status == schedule_service.STATUS_ABSENT
        assert schedule.admin_notes == "no show"

    def test_absent_refused_after_check_in(self, workday, dsr_principal):
        schedule_service.check_in(workday.id, actor=dsr_principal, now=NOW)
        with pytest.raises(InvalidTransitionError):
            schedule_service.mark_absent(workday.id)


class TestLeave:

    def test_leave_creates_and_overwrites_days(self, workday, owner, dsr):
        schedules = schedule_service.request_leave(
            agent_id=dsr.id,
            start_date="2026-10-17",
            end_date="2026-10-19",
            leave_type="annual",
            requested_by_user_id=owner.id,
            reason="family event",
            now=NOW,
        )

        assert len(schedules) == 3
        for schedule in schedules:
            assert schedule.status == schedule_service.STATUS_ON_LEAVE
            assert schedule.schedule_type == "VACATION"
            assert schedule.leave_approved_by_user_id == owner.id
            assert schedule.leave_approved_at == NOW

        overwritten = schedule_service.get_schedule(workday.id)
        assert overwritten.status == schedule_service.STATUS_ON_LEAVE
        assert overwritten.shifts == []

    def test_leave_refused_when_assigned(self, verified_invoice, owner, dsr):
        verified_invoice()
        assignment_service.create_assignment(
            agent_id=dsr.id, units=[IMEI_1], assigned_by_user_id=owner.id, day=TODAY, now=NOW,
        )

        with pytest.raises(ConflictError, match="assignment exists"):
            schedule_service.request_leave(
                agent_id=dsr.id,
                start_date="2026-10-17",
                end_date="2026-10-19",
                leave_type="SICK",
                requested_by_user_id=owner.id,
            )
        # Nothing written for the other days
        assert schedule_service.find_schedule(dsr.id, "2026-10-17") is None

    def test_invalid_leave_type(self, owner, dsr):
        with pytest.raises(ValidationError, match="leave_type"):
            schedule_service.request_leave(
                agent_id=dsr.id,
                start_date=TODAY,
                end_date=TODAY,
                leave_type="SABBATICAL",
                requested_by_user_id=owner.id,
            )


class TestReports:

    def test_monthly_report(self, verified_invoice, workday, owner, dsr, dsr_principal):
        verified_invoice()
        assignment = assignment_service.create_assignment(
            agent_id=dsr.id, units=[IMEI_1], assigned_by_user_id=owner.id, day=TODAY, now=NOW,
        )
        assignment_service.mark_sold(assignment.id, IMEI_1, sold_price_cents=13000, actor=dsr_principal)
        schedule_service.check_in(workday.id, actor=dsr_principal, now=datetime(2026, 10, 18, 4, 0))
        schedule_service.request_leave(
            agent_id=dsr.id,
            start_date="2026-10-20",
            end_date="2026-10-21",
            leave_type="PERSONAL",
            requested_by_user_id=owner.id,
        )

        report = schedule_service.monthly_report(dsr.id, year=2026, month=10)
        summary = report["summary"]
        assert summary["total_days"] == 3
        assert summary["work_days"] == 1
        assert summary["late_days"] == 1
        assert summary["leave_days"] == 2
        assert summary["total_revenue_cents"] == 13000
        assert summary["total_profit_cents"] == 3000
        assert summary["units_sold"] == 1

    def test_invalid_month(self, dsr):
        with pytest.raises(ValidationError):
            schedule_service.monthly_report(dsr.id, year=2026, month=13)

    def test_calendar_defaults_to_current_month(self, workday, dsr):
        result = schedule_service.calendar(dsr.id, now=NOW)
        assert result["start"] == "2026-10-01"
        assert result["end"] == "2026-10-31"
        assert [s["date"] for s in result["schedules"]] == ["2026-10-18"]

    def test_team_calendar(self, workday, owner, other_dsr):
        schedule_service.ensure_schedule(other_dsr.id, TODAY, created_by_user_id=owner.id)
        result = schedule_service.team_calendar(TODAY)
        assert result["total_agents"] == 2
        assert {s["agent_name"] for s in result["schedules"]} == {"Kasun Perera", "agent_b"}


def test_schedule_type_change_refused_with_assignment(verified_invoice, workday, owner, dsr):
    verified_invoice()
    assignment_service.create_assignment(
        agent_id=dsr.id, units=[IMEI_1], assigned_by_user_id=owner.id, day=date(2026, 10, 18), now=NOW,
    )
    with pytest.raises(ConflictError):
        schedule_service.update_schedule(
            workday.id, patch={"schedule_type": "DAY_OFF"}, updated_by_user_id=owner.id,
        )
