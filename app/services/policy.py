from functools import wraps
from flask import abort, request, jsonify
from flask_login import current_user

_ERROR_SLUGS = {401: "unauthorized", 403: "forbidden", 404: "not_found"}


def login_required_json(fn):
    """Like flask_login.login_required, but answers API callers with a JSON 401."""
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not getattr(current_user, "is_authenticated", False):
            return _abort_smart(401)
        return fn(*args, **kwargs)
    return _wrap


def role_required(*roles, message=None):
    def deco(fn):
        @wraps(fn)
        def _wrap(*args, **kwargs):
            if not getattr(current_user, "is_authenticated", False):
                return _abort_smart(401)
            if getattr(current_user, "role", None) not in roles:
                return _abort_smart(403, message)
            return fn(*args, **kwargs)
        return _wrap
    return deco


def _abort_smart(code: int, message=None):
    # API and JSON-accepting clients get a JSON-shaped error
    accept = (request.headers.get("Accept") or "").lower()
    if request.path.startswith("/api/") or "application/json" in accept or request.is_json:
        payload = {"error": _ERROR_SLUGS[code], "code": code}
        if message:
            payload["message"] = message
        return jsonify(payload), code
    abort(code)
