# Overview: Flask API routes for DSR schedules, attendance and leave; parses input and returns JSON responses.

"""
Schedule Routes

SECURITY:
- Planning (create, bulk, update, delete, leave, absent) requires owner or clerk.
- Check-in/out, calendars and monthly reports are open to the agent themself
  and to staff.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_principal, require_role
from ..services import auth_service, schedule_service
from ..services.auth_service import ROLE_CLERK, ROLE_OWNER


schedules_bp = Blueprint("schedules", __name__, url_prefix="/api/schedules")


@schedules_bp.post("")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def create_schedule_route():
    data = request.get_json(silent=True) or {}
    schedule = schedule_service.create_schedule(
        agent_id=data.get("agent_id"),
        day=data.get("date"),
        schedule_type=data.get("schedule_type") or "WORKDAY",
        shifts=data.get("shifts"),
        notes=data.get("notes"),
        created_by_user_id=g.principal.user_id,
    )
    return jsonify({"schedule": schedule.to_dict()}), 201


@schedules_bp.post("/bulk")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def bulk_create_route():
    data = request.get_json(silent=True) or {}
    created = schedule_service.bulk_create_schedules(
        agent_id=data.get("agent_id"),
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        work_days=data.get("work_days") or [],
        shifts=data.get("shifts"),
        notes=data.get("notes"),
        created_by_user_id=g.principal.user_id,
    )
    return jsonify({"count": len(created), "schedules": [s.to_dict() for s in created]}), 201


@schedules_bp.post("/ensure")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def ensure_schedule_route():
    data = request.get_json(silent=True) or {}
    auth_service.get_active_agent(data.get("agent_id"))
    schedule = schedule_service.ensure_schedule(
        data.get("agent_id"),
        data.get("date"),
        created_by_user_id=g.principal.user_id,
    )
    return jsonify({"schedule": schedule.to_dict()})


@schedules_bp.post("/leave")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def request_leave_route():
    data = request.get_json(silent=True) or {}
    schedules = schedule_service.request_leave(
        agent_id=data.get("agent_id"),
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        leave_type=data.get("leave_type"),
        reason=data.get("reason"),
        requested_by_user_id=g.principal.user_id,
    )
    return jsonify({"count": len(schedules), "schedules": [s.to_dict() for s in schedules]})


@schedules_bp.get("/<int:schedule_id>")
@require_principal
def get_schedule_route(schedule_id: int):
    schedule = schedule_service.get_schedule(schedule_id)
    auth_service.require_self_or_staff(g.principal, schedule.agent_id, schedule_id=schedule.id)
    return jsonify({"schedule": schedule.to_dict()})


@schedules_bp.get("/agents/<int:agent_id>/date/<day>")
@require_principal
def get_schedule_for_day_route(agent_id: int, day: str):
    auth_service.require_self_or_staff(g.principal, agent_id, agent_id=agent_id)
    schedule = schedule_service.get_schedule_for_day(agent_id, day)
    return jsonify({"schedule": schedule.to_dict()})


@schedules_bp.patch("/<int:schedule_id>")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def update_schedule_route(schedule_id: int):
    patch = request.get_json(silent=True) or {}
    schedule = schedule_service.update_schedule(schedule_id, patch=patch, updated_by_user_id=g.principal.user_id)
    return jsonify({"schedule": schedule.to_dict()})


@schedules_bp.delete("/<int:schedule_id>")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def delete_schedule_route(schedule_id: int):
    schedule_service.delete_schedule(schedule_id)
    return jsonify({"deleted": True, "schedule_id": schedule_id})


@schedules_bp.post("/<int:schedule_id>/check-in")
@require_principal
def check_in_route(schedule_id: int):
    schedule = schedule_service.check_in(schedule_id, actor=g.principal)
    return jsonify({"schedule": schedule.to_dict()})


@schedules_bp.post("/<int:schedule_id>/check-out")
@require_principal
def check_out_route(schedule_id: int):
    schedule = schedule_service.check_out(schedule_id, actor=g.principal)
    return jsonify({"schedule": schedule.to_dict()})


@schedules_bp.post("/<int:schedule_id>/absent")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def mark_absent_route(schedule_id: int):
    data = request.get_json(silent=True) or {}
    schedule = schedule_service.mark_absent(
        schedule_id, notes=data.get("notes"), updated_by_user_id=g.principal.user_id
    )
    return jsonify({"schedule": schedule.to_dict()})


@schedules_bp.get("/calendar/<int:agent_id>")
@require_principal
def calendar_route(agent_id: int):
    auth_service.require_self_or_staff(g.principal, agent_id, agent_id=agent_id)
    return jsonify(schedule_service.calendar(
        agent_id,
        year=request.args.get("year", type=int),
        month=request.args.get("month", type=int),
    ))


@schedules_bp.get("/reports/monthly/<int:agent_id>/<int:year>/<int:month>")
@require_principal
def monthly_report_route(agent_id: int, year: int, month: int):
    auth_service.require_self_or_staff(g.principal, agent_id, agent_id=agent_id)
    return jsonify(schedule_service.monthly_report(agent_id, year=year, month=month))


@schedules_bp.get("/reports/team-calendar")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def team_calendar_route():
    return jsonify(schedule_service.team_calendar(request.args.get("date")))
