# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .exceptions import NotFoundError
from .services.tenant_service import require_store


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer")


def require_context(f):
    """
    Establish tenant context from the request headers.

    Sets the following Flask g attributes:
    - g.store_id: from X-Store-Id (REQUIRED, must be an active store)
    - g.user_id: from X-User-Id (optional, recorded as the acting user)

    Authentication is handled upstream; this only scopes the request.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            store_id = _header_int("X-Store-Id")
            user_id = _header_int("X-User-Id")
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        if store_id is None:
            return jsonify({"error": "Tenant context required (X-Store-Id)"}), 401

        try:
            require_store(store_id)
        except NotFoundError as e:
            return jsonify(e.to_dict()), 404

        g.store_id = store_id
        g.user_id = user_id
        return f(*args, **kwargs)

    return decorated_function
