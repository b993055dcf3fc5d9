from flask import Blueprint, jsonify

bp = Blueprint("api", __name__)


def json_error(code: int, error: str, message: str | None = None, **extra):
    payload = {"error": error, "code": code}
    if message:
        payload["message"] = message
    payload.update(extra)
    return jsonify(payload), code


def invalid(errors):
    return json_error(400, "invalid_data", "Invalid data", errors=list(errors))


# Import submodules so their routes register on the same bp
from . import users     # noqa: E402,F401  /api/auth/user, /api/admin/users, role changes
from . import feedback  # noqa: E402,F401  /api/feedback/*
from . import team      # noqa: E402,F401  /api/team
