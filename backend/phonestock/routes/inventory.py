# Overview: Flask API routes for purchase invoices, phone units and stock; parses input and returns JSON responses.

"""
Inventory Routes

SECURITY:
- Invoice intake, edits and cancellation require owner or clerk.
- Verification and stock holds require owner.
- Stock views are open to any principal.
"""

from flask import Blueprint, current_app, request, jsonify, g

from ..decorators import require_principal, require_role
from ..services import invoice_service, ledger_service, stock_service
from ..services.auth_service import ROLE_CLERK, ROLE_OWNER


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


# =============================================================================
# Invoices
# =============================================================================

@inventory_bp.get("/invoices")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def list_invoices_route():
    """
    Query parameters:
    - status, supplier, search
    - start_date / end_date: YYYY-MM-DD, inclusive
    - limit (default 50), offset (default 0)
    """
    result = invoice_service.list_invoices(
        status=request.args.get("status"),
        supplier=request.args.get("supplier"),
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
        search=request.args.get("search"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({
        "items": [inv.to_summary() for inv in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@inventory_bp.post("/invoices")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def create_invoice_route():
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.create_invoice(data=data, created_by_user_id=g.principal.user_id)
    return jsonify({"invoice": invoice.to_dict()}), 201


@inventory_bp.get("/invoices/summary")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def invoice_summary_route():
    return jsonify({"summary": invoice_service.invoice_summary()})


@inventory_bp.get("/invoices/<int:invoice_id>")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def get_invoice_route(invoice_id: int):
    return jsonify({"invoice": invoice_service.get_invoice(invoice_id).to_dict()})


@inventory_bp.get("/invoices/by-number/<invoice_number>")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def get_invoice_by_number_route(invoice_number: str):
    return jsonify({"invoice": invoice_service.get_invoice_by_number(invoice_number).to_dict()})


@inventory_bp.patch("/invoices/<int:invoice_id>")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def edit_invoice_route(invoice_id: int):
    patch = request.get_json(silent=True) or {}
    invoice = invoice_service.edit_invoice(invoice_id, patch=patch, updated_by_user_id=g.principal.user_id)
    return jsonify({"invoice": invoice.to_dict()})


@inventory_bp.post("/invoices/<int:invoice_id>/proof")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def attach_proof_route(invoice_id: int):
    """
    Either a multipart upload (field "proof") stored through object storage,
    or JSON {proof_key, proof_url} for an object stored elsewhere.
    """
    upload = request.files.get("proof")
    if upload is not None:
        try:
            invoice = invoice_service.upload_proof(
                invoice_id,
                data=upload.read(),
                filename=upload.filename,
                mime_type=upload.mimetype,
                updated_by_user_id=g.principal.user_id,
            )
        except OSError:
            current_app.logger.exception("Failed to store invoice proof")
            return jsonify({"error": "Failed to store proof of purchase"}), 500
        return jsonify({"invoice": invoice.to_dict(include_units=False)})

    data = request.get_json(silent=True) or {}
    invoice = invoice_service.attach_proof(
        invoice_id,
        proof_key=data.get("proof_key"),
        proof_url=data.get("proof_url"),
        updated_by_user_id=g.principal.user_id,
    )
    return jsonify({"invoice": invoice.to_dict(include_units=False)})


@inventory_bp.post("/invoices/<int:invoice_id>/verify")
@require_principal
@require_role(ROLE_OWNER)
def verify_invoice_route(invoice_id: int):
    invoice = invoice_service.verify_invoice(invoice_id, verified_by_user_id=g.principal.user_id)
    return jsonify({"invoice": invoice.to_dict(include_units=False)})


@inventory_bp.post("/invoices/<int:invoice_id>/cancel")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def cancel_invoice_route(invoice_id: int):
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.cancel_invoice(
        invoice_id,
        cancelled_by_user_id=g.principal.user_id,
        reason=data.get("reason"),
    )
    return jsonify({"invoice": invoice.to_dict(include_units=False)})


# =============================================================================
# Units
# =============================================================================

@inventory_bp.get("/units")
@require_principal
def list_units_route():
    result = stock_service.list_units(
        status=request.args.get("status"),
        condition=request.args.get("condition"),
        brand=request.args.get("brand"),
        search=request.args.get("search"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({
        "items": [u.to_dict() for u in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@inventory_bp.get("/units/<imei>")
@require_principal
def unit_history_route(imei: str):
    return jsonify(ledger_service.unit_history(imei))


@inventory_bp.patch("/units/<imei>")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def update_unit_route(imei: str):
    patch = request.get_json(silent=True) or {}
    unit = ledger_service.update_unit(imei, patch=patch, updated_by_user_id=g.principal.user_id)
    return jsonify({"unit": unit.to_dict()})


@inventory_bp.delete("/units/<imei>")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def delete_unit_route(imei: str):
    return jsonify(ledger_service.delete_unit(imei))


@inventory_bp.post("/units/<imei>/hold")
@require_principal
@require_role(ROLE_OWNER)
def hold_unit_route(imei: str):
    data = request.get_json(silent=True) or {}
    unit = ledger_service.set_hold_status(imei, data.get("status"), notes=data.get("notes"))
    return jsonify({"unit": unit.to_dict()})


@inventory_bp.post("/units/<imei>/release")
@require_principal
@require_role(ROLE_OWNER)
def release_unit_route(imei: str):
    unit = ledger_service.release_hold(imei)
    return jsonify({"unit": unit.to_dict()})


# =============================================================================
# Stock
# =============================================================================

@inventory_bp.get("/stock/available")
@require_principal
def available_stock_route():
    return jsonify({"items": stock_service.available_stock()})


@inventory_bp.get("/stock/available/detailed")
@require_principal
def available_stock_detailed_route():
    return jsonify({"items": stock_service.available_stock_detailed()})


@inventory_bp.get("/stock/statistics")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def statistics_route():
    return jsonify(stock_service.statistics())


@inventory_bp.get("/stock/low")
@require_principal
@require_role(ROLE_OWNER, ROLE_CLERK)
def low_stock_route():
    threshold = request.args.get("threshold", type=int)
    return jsonify({"items": stock_service.low_stock(threshold)})
