import re

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{1,149}$")
# Cache-only records carry negative ids
_INT_RE = re.compile(r"^-?\d+$")


def clean_str(val: str | None, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]


def clean_text(val: str | None, max_len: int = 5000) -> str | None:
    """Trim free text but keep its line breaks."""
    if val is None:
        return None
    s = str(val).strip()
    if not s:
        return None
    return s[:max_len]


def is_valid_email(val: str | None) -> bool:
    if not val:
        return True
    return bool(_EMAIL_RE.match(val))


def is_valid_username(val: str | None) -> bool:
    if not val:
        return False
    return bool(_USERNAME_RE.match(val))


def to_int_or_none(val) -> int | None:
    """Accept ints and (optionally signed) digit strings; bools and anything else -> None."""
    if isinstance(val, bool):
        return None
    if isinstance(val, int):
        return val
    if isinstance(val, str) and _INT_RE.match(val.strip()):
        return int(val.strip())
    return None
