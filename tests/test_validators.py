from app.blueprints.api.validators import (
    validate_feedback_payload,
    validate_registration_payload,
    validate_role_payload,
)
from app.utils.validators import clean_str, clean_text, is_valid_email, to_int_or_none


def test_clean_helpers():
    assert clean_str("  Alice   Johnson ") == "Alice Johnson"
    assert clean_str("   ") is None
    assert clean_str("abcdef", max_len=3) == "abc"
    assert clean_text("line one\nline two  ") == "line one\nline two"
    assert is_valid_email(None) and is_valid_email("a@b.co")
    assert not is_valid_email("not-an-email")


def test_to_int_or_none():
    assert to_int_or_none(3) == 3
    assert to_int_or_none(" 12 ") == 12
    assert to_int_or_none("-3") == -3
    assert to_int_or_none("- 3") is None
    assert to_int_or_none(True) is None
    assert to_int_or_none("abc") is None
    assert to_int_or_none(None) is None


def test_feedback_payload_full():
    clean, errors = validate_feedback_payload({
        "employee_id": "3",
        "strengths": " Great ownership ",
        "improvements": "Delegate more",
        "sentiment": "Positive",
        "manager_id": 99,
        "acknowledged": True,
    })
    assert errors == []
    assert clean == {
        "employee_id": 3,
        "strengths": "Great ownership",
        "improvements": "Delegate more",
        "sentiment": "positive",
    }


def test_feedback_payload_reports_every_problem():
    _, errors = validate_feedback_payload({"employee_id": "x", "strengths": "", "sentiment": "great"})
    assert len(errors) == 4
    assert any(e.startswith("employee_id") for e in errors)
    assert any(e.startswith("improvements") for e in errors)
    assert any(e.startswith("sentiment") for e in errors)


def test_feedback_payload_partial():
    clean, errors = validate_feedback_payload({"sentiment": "neutral"}, partial=True)
    assert errors == [] and clean == {"sentiment": "neutral"}

    _, errors = validate_feedback_payload({"acknowledged": True}, partial=True)
    assert errors and errors[0].startswith("payload")

    _, errors = validate_feedback_payload(["not", "a", "dict"])
    assert errors == ["payload: must be a JSON object"]


def test_role_payload():
    clean, errors = validate_role_payload({"role": "Manager", "manager_id": None})
    assert errors == [] and clean == {"role": "manager", "manager_id": None}

    clean, errors = validate_role_payload({"role": "employee", "manager_id": "2"})
    assert errors == [] and clean["manager_id"] == 2

    _, errors = validate_role_payload({"role": "admin"}, allowed_roles=("manager", "employee"))
    assert errors and errors[0].startswith("role")

    _, errors = validate_role_payload({"role": "employee", "manager_id": "boss"})
    assert errors == ["manager_id: must be an integer or null"]


def test_registration_payload():
    clean, errors = validate_registration_payload({
        "username": "new.hire",
        "password": "longenough",
        "email": "New.Hire@Company.com",
        "first_name": " New ",
    })
    assert errors == []
    assert clean["email"] == "new.hire@company.com"
    assert clean["first_name"] == "New" and clean["last_name"] is None

    _, errors = validate_registration_payload({"username": "x", "password": "short", "email": "nope"})
    assert len(errors) == 3
