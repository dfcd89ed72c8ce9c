# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Session management with token-based auth
- Field staff (sales reps, drivers) get location tracking scheduled on
  login and stopped on logout
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import StockRunError
from ..extensions import get_tracking_registry
from ..permissions import get_role_permissions
from ..services import auth_service
from ..services import session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.login(email, password)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        tracking_scheduled = False
        if user.is_field_staff:
            tracking_scheduled = get_tracking_registry().on_login(user.id) is not None

        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(get_role_permissions(user.role)),
            "token": token,
            "session": session.to_dict(),
            "tracking_scheduled": tracking_scheduled,
            "message": "Login successful"
        }), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """
    Revoke session token (logout) and stop location tracking for field staff.

    WHY: Explicit logout prevents token reuse.
    """
    try:
        user = g.current_user
        session_service.revoke_session(g.auth_token, reason="User logout")

        if user.is_field_staff:
            get_tracking_registry().on_logout(user.id)

        return jsonify({"message": "Logout successful"}), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user with role permissions and tracking state."""
    user = g.current_user
    tracker = get_tracking_registry().peek(user.id)
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(get_role_permissions(user.role)),
        "tracking": tracker.status() if tracker else None,
    }), 200
