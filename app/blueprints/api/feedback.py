from flask import jsonify, request, current_app
from flask_login import current_user

from app.models.user import ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE
from app.services.policy import login_required_json, role_required
from app.services.storage import get_storage
from app.utils.validators import to_int_or_none
from . import bp, invalid, json_error
from .validators import validate_feedback_payload


def _load_feedback(raw_id):
    """Return (feedback, None) or (None, error_response)."""
    feedback_id = to_int_or_none(raw_id)
    if feedback_id is None:
        return None, json_error(400, "invalid_data", "Invalid feedback ID")
    lookup = get_storage().lookup_feedback(feedback_id)
    if lookup.value is not None:
        return lookup.value, None
    if lookup.store_unavailable:
        return None, json_error(503, "store_unavailable", "Feedback is temporarily unavailable")
    return None, json_error(404, "not_found", "Feedback not found")


@bp.post("/feedback")
@role_required(ROLE_MANAGER, message="Only managers can create feedback")
def create_feedback():
    clean, errors = validate_feedback_payload(request.get_json(silent=True))
    if errors:
        return invalid(errors)

    storage = get_storage()
    employee = storage.get_user(clean["employee_id"])
    if employee is None:
        return json_error(404, "not_found", "Employee not found")
    if employee.manager_id != current_user.id:
        return json_error(403, "forbidden", "You can only give feedback to your direct reports")

    fb = storage.create_feedback({**clean, "manager_id": current_user.id})
    current_app.logger.info(
        "feedback_created",
        extra={"event": "feedback_created", "feedback_id": fb.id, "synthetic": fb.synthetic},
    )
    return jsonify(fb.to_dict()), 201


@bp.put("/feedback/<feedback_id>")
@role_required(ROLE_MANAGER, message="Only managers can edit feedback")
def update_feedback(feedback_id):
    fb, error = _load_feedback(feedback_id)
    if error:
        return error
    # Another manager's feedback is reported as missing
    if fb.manager_id != current_user.id:
        return json_error(404, "not_found", "Feedback not found")

    clean, errors = validate_feedback_payload(request.get_json(silent=True), partial=True)
    if errors:
        return invalid(errors)

    updated = get_storage().update_feedback(fb.id, clean)
    if updated is None:
        return json_error(404, "not_found", "Feedback not found")
    return jsonify(updated.to_dict())


@bp.patch("/feedback/<feedback_id>/acknowledge")
@login_required_json
def acknowledge_feedback(feedback_id):
    fb, error = _load_feedback(feedback_id)
    if error:
        return error
    if fb.employee_id != current_user.id:
        return json_error(403, "forbidden", "You can only acknowledge your own feedback")

    updated = get_storage().acknowledge_feedback(fb.id)
    if updated is None:
        return json_error(404, "not_found", "Feedback not found")
    return jsonify(updated.to_dict())


@bp.get("/feedback/manager")
@role_required(ROLE_MANAGER, message="Only managers can access this endpoint")
def manager_feedback():
    rows = get_storage().get_feedback_with_users(manager_id=current_user.id)
    return jsonify([row.to_dict() for row in rows])


@bp.get("/feedback/employee")
@login_required_json
def my_feedback():
    rows = get_storage().get_feedback_with_users(employee_id=current_user.id)
    return jsonify([row.to_dict() for row in rows])


@bp.get("/feedback/employee/<int(signed=True):employee_id>")
@login_required_json
def employee_feedback(employee_id: int):
    role = current_user.role
    if role == ROLE_EMPLOYEE and current_user.id != employee_id:
        return json_error(403, "forbidden", "Access denied")

    if role == ROLE_MANAGER:
        employee = get_storage().get_user(employee_id)
        if employee is None or employee.manager_id != current_user.id:
            return json_error(403, "forbidden", "Access denied")
    elif role == ROLE_ADMIN and get_storage().get_user(employee_id) is None:
        return json_error(404, "not_found", "User not found")

    rows = get_storage().get_feedback_with_users(employee_id=employee_id)
    return jsonify([row.to_dict() for row in rows])
