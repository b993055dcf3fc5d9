from typing import Any, Dict, List, Tuple

from app.models.feedback import SENTIMENT_CHOICES
from app.models.user import ROLE_CHOICES
from app.utils.validators import clean_str, clean_text, is_valid_email, is_valid_username, to_int_or_none

MIN_PASSWORD_LENGTH = 8


def validate_feedback_payload(payload: Any, partial: bool = False) -> Tuple[Dict[str, Any], List[str]]:
    """
    Full payload (create): employee_id, strengths, improvements, sentiment are required.
    Partial payload (edit): any subset of strengths / improvements / sentiment, at least one.
    manager_id and acknowledgment fields are never taken from the client.
    """
    if not isinstance(payload, dict):
        return {}, ["payload: must be a JSON object"]

    clean: Dict[str, Any] = {}
    errors: List[str] = []

    if not partial:
        employee_id = to_int_or_none(payload.get("employee_id"))
        if employee_id is None:
            errors.append("employee_id: required integer")
        else:
            clean["employee_id"] = employee_id

    for key in ("strengths", "improvements"):
        if partial and key not in payload:
            continue
        val = clean_text(payload.get(key))
        if not val:
            errors.append(f"{key}: required text")
        else:
            clean[key] = val

    if not partial or "sentiment" in payload:
        sentiment = (payload.get("sentiment") or "")
        sentiment = sentiment.strip().lower() if isinstance(sentiment, str) else ""
        if sentiment not in SENTIMENT_CHOICES:
            errors.append(f"sentiment: must be one of {', '.join(SENTIMENT_CHOICES)}")
        else:
            clean["sentiment"] = sentiment

    if partial and not clean and not errors:
        errors.append("payload: nothing to update (strengths, improvements or sentiment)")

    return clean, errors


def validate_role_payload(payload: Any, allowed_roles=ROLE_CHOICES) -> Tuple[Dict[str, Any], List[str]]:
    if not isinstance(payload, dict):
        return {}, ["payload: must be a JSON object"]

    errors: List[str] = []
    role = payload.get("role")
    role = role.strip().lower() if isinstance(role, str) else None
    if role not in allowed_roles:
        errors.append(f"role: must be one of {', '.join(allowed_roles)}")

    manager_id = None
    raw_manager = payload.get("manager_id")
    if raw_manager not in (None, ""):
        manager_id = to_int_or_none(raw_manager)
        if manager_id is None:
            errors.append("manager_id: must be an integer or null")

    return {"role": role, "manager_id": manager_id}, errors


def validate_registration_payload(payload: Any) -> Tuple[Dict[str, Any], List[str]]:
    if not isinstance(payload, dict):
        return {}, ["payload: must be a JSON object"]

    errors: List[str] = []
    username = clean_str(payload.get("username"), max_len=150)
    password = payload.get("password") or ""
    email = clean_str(payload.get("email"))
    email = email.lower() if email else None

    if not is_valid_username(username):
        errors.append("username: 2-150 letters, digits, '.', '_' or '-'")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"password: must be at least {MIN_PASSWORD_LENGTH} characters")
    if not is_valid_email(email):
        errors.append("email: invalid address")

    clean = {
        "username": username,
        "password": password,
        "email": email,
        "first_name": clean_str(payload.get("first_name"), max_len=100),
        "last_name": clean_str(payload.get("last_name"), max_len=100),
    }
    return clean, errors
