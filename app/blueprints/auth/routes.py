from flask import request, jsonify, current_app
from flask_login import login_user, logout_user, current_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from app.extensions import limiter
from app.models.user import ROLE_EMPLOYEE
from app.services.storage import get_storage
from app.blueprints.api import invalid, json_error
from app.blueprints.api.validators import validate_registration_payload
from . import bp


def _payload():
    return request.get_json(silent=True) or request.form or {}


def _login_username_scope():
    username = (_payload().get("username") or "").strip().lower()
    # Keep a stable scope even if username is blank
    return f"login-username:{username or 'missing'}"


@bp.get("/csrf")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")              # per-IP (anon → IP via _rate_limit_key)
@limiter.limit("5 per minute; 20 per hour", key_func=_login_username_scope)  # per-account
def login_post():
    data = _payload()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return invalid(["username and password are required"])

    lookup = get_storage().lookup_user_by_username(username)
    user = lookup.value
    if user is None and lookup.store_unavailable:
        return json_error(503, "store_unavailable", "Sign-in is temporarily unavailable")
    if user is None or not check_password_hash(user.password_hash, password):
        return json_error(401, "unauthorized", "Invalid credentials")

    login_user(user)
    current_app.logger.info("login", extra={"event": "login", "user_id": user.id})
    return jsonify(user.to_dict())


@bp.post("/logout")
def logout_post():
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"ok": True})


@bp.post("/register")
@limiter.limit("5 per minute; 20 per hour")
def register_post():
    clean, errors = validate_registration_payload(_payload())
    if errors:
        return invalid(errors)

    storage = get_storage()
    if storage.get_user_by_username(clean["username"]) is not None:
        return invalid(["username: already taken"])

    # New accounts start as employees; admins promote from there
    user = storage.create_user({**clean, "role": ROLE_EMPLOYEE})
    login_user(user)
    return jsonify(user.to_dict()), 201
