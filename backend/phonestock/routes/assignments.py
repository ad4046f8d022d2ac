# Overview: Flask API routes for DSR assignments; parses input and returns JSON responses.

"""
Assignment Routes

SECURITY:
- Creating assignments and the daily summary require owner or clerk.
- DSRs may view, sell from and return only their own assignments
  (enforced in assignment_service).
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_principal, require_role
from ..services import assignment_service
from ..services.auth_service import ROLE_CLERK, ROLE_OWNER


assignments_bp = Blueprint("assignments", __name__, url_prefix="/api/assignments")


@assignments_bp.post("")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def create_assignment_route():
    """
    Body: {agent_id, units: [{imei, target_price_cents?}], date?, notes?}
    """
    data = request.get_json(silent=True) or {}
    assignment = assignment_service.create_assignment(
        agent_id=data.get("agent_id"),
        units=data.get("units") or [],
        day=data.get("date"),
        notes=data.get("notes"),
        assigned_by_user_id=g.principal.user_id,
    )
    return jsonify({"assignment": assignment.to_dict()}), 201


@assignments_bp.get("")
@require_principal
def list_assignments_route():
    result = assignment_service.list_assignments(
        actor=g.principal,
        agent_id=request.args.get("agent_id", type=int),
        status=request.args.get("status"),
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({
        "items": [a.to_summary() for a in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@assignments_bp.get("/daily-summary")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def daily_summary_route():
    return jsonify(assignment_service.daily_summary(request.args.get("date")))


@assignments_bp.get("/<int:assignment_id>")
@require_principal
def get_assignment_route(assignment_id: int):
    assignment = assignment_service.get_assignment_for(assignment_id, actor=g.principal)
    return jsonify({"assignment": assignment.to_dict()})


@assignments_bp.post("/<int:assignment_id>/units/<imei>/sold")
@require_principal
def mark_sold_route(assignment_id: int, imei: str):
    data = request.get_json(silent=True) or {}
    assignment = assignment_service.mark_sold(
        assignment_id,
        imei,
        sold_price_cents=data.get("sold_price_cents"),
        sold_at=data.get("sold_at"),
        sold_to=data.get("sold_to"),
        actor=g.principal,
    )
    line = assignment.line_for(imei)
    return jsonify({
        "unit": line.to_dict() if line else None,
        "assignment": assignment.to_summary(),
    })


@assignments_bp.post("/<int:assignment_id>/return")
@require_principal
def return_units_route(assignment_id: int):
    data = request.get_json(silent=True) or {}
    result = assignment_service.return_units(
        assignment_id,
        data.get("imeis") or [],
        notes=data.get("notes"),
        actor=g.principal,
    )
    return jsonify(result.to_dict())
