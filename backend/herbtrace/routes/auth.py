# Overview: Login, logout and profile routes for supply-chain actors.

"""
Actors log in with username (or email) and password and receive a bearer
token. Accounts are provisioned through `flask users create`; there is no
self-registration endpoint.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import bearer_token, require_auth
from ..services import auth_service, permission_service, session_service
from ..time_utils import to_utc_z
from .errors import json_error


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _profile(user, permissions) -> dict:
    return {"user": user.to_dict(), "permissions": sorted(permissions)}


@auth_bp.post("/login")
def login_route():
    """Exchange credentials for a session token (sent back as Bearer <token>)."""
    data = request.get_json(silent=True) or {}
    identity = data.get("username") or data.get("email")
    password = data.get("password")
    if not identity or not password:
        return jsonify({"error": "username/email and password required"}), 400

    try:
        user = auth_service.authenticate(identity, password)
        if user is None:
            current_app.logger.info("Rejected login for %s from %s", identity, request.remote_addr)
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_pk=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except Exception as e:
        return json_error(e, "Failed to log in")

    body = _profile(user, permission_service.get_user_permissions(user))
    body.update(token=token, expiresAt=to_utc_z(session.expires_at), message="Login successful")
    return jsonify(body), 200


@auth_bp.post("/logout")
def logout_route():
    token = bearer_token()
    if token is None:
        return jsonify({"error": "Authorization header required"}), 401

    try:
        revoked = session_service.revoke_session(token, reason="User logout")
    except Exception as e:
        return json_error(e, "Failed to log out")

    if not revoked:
        return jsonify({"error": "Invalid or expired token"}), 401
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(_profile(g.current_user, g.permissions)), 200
