# Overview: Request decorators for API routes; principal loading and role checks.

from functools import wraps

from flask import current_app, g, jsonify, request
from werkzeug.utils import import_string

from .services import auth_service


def gateway_header_loader():
    """
    Default principal loader: identity asserted by a trusted gateway.

    Reads X-User-Id (required) and X-User-Role (optional) and validates them
    against the users table. Returns None when no identity was asserted.
    """
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        return None
    return auth_service.load_principal(user_id, request.headers.get("X-User-Role"))


def _resolve_loader():
    loader = current_app.config.get("PRINCIPAL_LOADER")
    if loader is None:
        return gateway_header_loader
    if isinstance(loader, str):
        return import_string(loader)
    return loader


def require_principal(f):
    """
    Require an authenticated principal.

    Sets g.principal (auth_service.Principal). Returns 401 when no identity
    was supplied; an unknown user or mismatched role surfaces as 403 through
    the AuthorizationError handler.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = _resolve_loader()()
        if principal is None:
            return jsonify({"error": "Authentication required"}), 401
        g.principal = principal
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require @require_principal first; 403 unless the principal holds one of `roles`."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "principal"):
                return jsonify({"error": "Authentication required"}), 401
            auth_service.require_role(g.principal, *roles)
            return f(*args, **kwargs)

        return decorated_function
    return decorator
