# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes.

Session management is upstream: login verifies credentials and returns the
user record (role, tenant, page permissions) for the caller to keep.
"""

from flask import Blueprint, request, jsonify

from ..services import auth_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user.

    Body: {"username", "password"}
    Returns the user on success, 401 on bad credentials.
    """
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    password = data.get("password")

    if not all([username, password]):
        return jsonify({"error": "username and password required"}), 400

    user = auth_service.login(username, password)
    return jsonify({"user": user})
