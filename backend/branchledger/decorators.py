# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import session_service


def require_auth(f):
    """
    Require a signed bearer token and establish the actor context.

    Sets g.identity (session_service.Identity): actor_id, role and the
    authorized branch_ids issued by the identity provider.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, tampered or expired token
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        identity = session_service.verify_token(
            token, max_age=current_app.config.get("SESSION_TOKEN_MAX_AGE")
        )
        if not identity:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.identity = identity
        return f(*args, **kwargs)

    return decorated_function


def branch_access_denied(branch_id: int | None):
    """403 response when the actor is not authorized for branch_id, else None."""
    if branch_id is None or g.identity.can_access_branch(branch_id):
        return None
    return jsonify({"error": "Branch access denied"}), 403
