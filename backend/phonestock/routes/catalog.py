# Overview: Flask API routes for the phone catalog; parses input and returns JSON responses.

"""
Catalog Routes

SECURITY: All routes require a principal. Only owners may create, edit or
deactivate products.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_principal, require_role
from ..services import catalog_service
from ..services.auth_service import ROLE_OWNER


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


def _parse_active(value):
    if value is None or value == "":
        return True
    if value.lower() == "all":
        return None
    return value.lower() in ("1", "true", "yes")


@catalog_bp.get("/products")
@require_principal
def list_products_route():
    result = catalog_service.list_products(
        brand=request.args.get("brand"),
        search=request.args.get("search"),
        active=_parse_active(request.args.get("active")),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({
        "items": [p.to_dict() for p in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@catalog_bp.post("/products")
@require_principal
@require_role(ROLE_OWNER)
def create_product_route():
    payload = request.get_json(silent=True) or {}
    product = catalog_service.create_product(payload=payload, created_by_user_id=g.principal.user_id)
    return jsonify({"product": product.to_dict()}), 201


@catalog_bp.get("/products/<int:product_id>")
@require_principal
def get_product_route(product_id: int):
    return jsonify({"product": catalog_service.get_product(product_id).to_dict()})


@catalog_bp.patch("/products/<int:product_id>")
@require_principal
@require_role(ROLE_OWNER)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    product = catalog_service.update_product(
        product_id, payload=payload, updated_by_user_id=g.principal.user_id
    )
    return jsonify({"product": product.to_dict()})


@catalog_bp.delete("/products/<int:product_id>")
@require_principal
@require_role(ROLE_OWNER)
def deactivate_product_route(product_id: int):
    product = catalog_service.deactivate_product(product_id, updated_by_user_id=g.principal.user_id)
    return jsonify({"product": product.to_dict()})
