from flask import jsonify, request, current_app
from flask_login import current_user

from app.models.user import ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE
from app.services.policy import login_required_json, role_required
from app.services.storage import get_storage
from . import bp, invalid, json_error
from .validators import validate_role_payload


def _resolve_manager(user_id: int, role: str, manager_id):
    """Return (manager_id, errors). Only employees keep a manager, and it must be a manager."""
    if role != ROLE_EMPLOYEE or manager_id is None:
        return None, []
    if manager_id == user_id:
        return None, ["manager_id: a user cannot manage themselves"]
    manager = get_storage().get_user(manager_id)
    if manager is None or manager.role != ROLE_MANAGER:
        return None, ["manager_id: must reference a user with role manager"]
    return manager_id, []


def _apply_role(user_id: int, role: str, manager_id):
    manager_id, errors = _resolve_manager(user_id, role, manager_id)
    if errors:
        return invalid(errors)

    # No cache fallback here; StoreUnavailableError becomes a 503 in the app handler
    updated = get_storage().update_user_role(user_id, role, manager_id)
    if updated is None:
        return json_error(404, "not_found", "User not found")

    current_app.logger.info(
        "role_updated",
        extra={"event": "role_updated", "user_id": user_id, "role": role, "manager_id": manager_id,
               "actor_id": current_user.id},
    )
    return jsonify(updated.to_dict())


@bp.get("/auth/user")
@login_required_json
def auth_user():
    return jsonify(current_user.to_dict())


@bp.get("/admin/users")
@role_required(ROLE_ADMIN)
def admin_users():
    return jsonify([u.to_dict() for u in get_storage().get_all_users()])


@bp.get("/admin/feedback")
@role_required(ROLE_ADMIN)
def admin_feedback():
    return jsonify([row.to_dict() for row in get_storage().get_feedback_with_users()])


@bp.patch("/admin/users/<int(signed=True):user_id>/role")
@role_required(ROLE_ADMIN, message="Only admins can change user roles")
def admin_update_role(user_id: int):
    clean, errors = validate_role_payload(request.get_json(silent=True))
    if errors:
        return invalid(errors)
    if get_storage().get_user(user_id) is None:
        return json_error(404, "not_found", "User not found")
    return _apply_role(user_id, clean["role"], clean["manager_id"])


@bp.patch("/user/role")
@login_required_json
def self_update_role():
    """Demo switch: a signed-in user flips themselves between manager and employee."""
    clean, errors = validate_role_payload(
        request.get_json(silent=True), allowed_roles=(ROLE_MANAGER, ROLE_EMPLOYEE)
    )
    if errors:
        return invalid(errors)
    return _apply_role(current_user.id, clean["role"], clean["manager_id"])
