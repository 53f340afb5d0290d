# Overview: Flask API routes for user administration; admin only.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..models.auth import ROLE_ADMIN
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth, require_role


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    users = auth_service.list_users(include_inactive=include_inactive)
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)}), 200


@users_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    """
    Create an employee or administrator.

    Body: user fields plus "password". A second active user with the same
    email is rejected with 409.
    """
    payload = dict(request.get_json(silent=True) or {})
    password = payload.pop("password", None)

    try:
        user = auth_service.create_user(payload, password=password, created_by_user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(user.to_dict()), 201


@users_bp.get("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def get_user_route(user_id: int):
    try:
        return jsonify(auth_service.get_user(user_id).to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@users_bp.put("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_user_route(user_id: int):
    payload = dict(request.get_json(silent=True) or {})
    password = payload.pop("password", None)

    try:
        user = auth_service.update_user(
            user_id, payload, password=password, updated_by_user_id=g.current_user.id
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(user.to_dict()), 200


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_user_route(user_id: int):
    """Deactivates; the row stays so past sales and purchases remain attributable."""
    if user_id == g.current_user.id:
        return jsonify({"error": "You cannot deactivate your own account"}), 400

    try:
        user = auth_service.deactivate_user(user_id, updated_by_user_id=g.current_user.id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(user.to_dict()), 200
