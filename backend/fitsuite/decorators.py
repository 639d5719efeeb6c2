# Overview: Request decorators for the manual/API routes.

import hmac
from functools import wraps
from flask import request, jsonify, current_app


def require_service_token(f):
    """
    Require the shared service bearer token.

    Guards the manual/API endpoints (orders, referrals, devices). Provider
    callbacks and return pages are public and do not use it.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Token does not match SERVICE_API_TOKEN
    - SERVICE_API_TOKEN is not configured (fail closed)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("SERVICE_API_TOKEN") or ""
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        if not expected or not hmac.compare_digest(token.encode(), expected.encode()):
            current_app.logger.warning("Rejected service token for %s %s", request.method, request.path)
            return jsonify({"error": "Invalid token"}), 401

        return f(*args, **kwargs)

    return decorated_function
