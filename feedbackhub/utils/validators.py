import re
from typing import List, Optional

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")
_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_COMMON_PATTERNS = (
    re.compile(r"123456"),
    re.compile(r"password", re.I),
    re.compile(r"qwerty", re.I),
    re.compile(r"abc123", re.I),
    re.compile(r"admin", re.I),
)

PASSWORD_MIN_LENGTH = 8


def clean_str(val: Optional[str]) -> Optional[str]:
    """
    Collapse whitespace, trim. Returns None if empty after cleaning.
    Over-long values are left intact so callers can reject them.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s


def clean_text(val: Optional[str]) -> Optional[str]:
    """Trim only; keeps the user's line breaks (messages, descriptions)."""
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def clean_choice(val, default: Optional[str] = None) -> Optional[str]:
    """
    Trimmed, lowercased enum value from a JSON payload. Missing or blank gives
    ``default``; non-strings give None so the caller's membership check rejects them.
    """
    if val is None:
        return default
    if not isinstance(val, str):
        return None
    s = val.strip().lower()
    return s or default


def normalize_email(val: Optional[str]) -> Optional[str]:
    s = clean_str(val)
    return s.lower() if s else None


def is_valid_email(val: Optional[str]) -> bool:
    if not val:
        return True
    return bool(_EMAIL_RE.match(val))


def is_valid_color(val: Optional[str]) -> bool:
    if not val:
        return True
    return bool(_HEX_COLOR_RE.match(val))


def password_problems(password: Optional[str]) -> List[str]:
    """Empty list means the password is acceptable."""
    password = password or ""
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        problems.append("Password must contain at least one number")
    if not _SPECIAL_RE.search(password):
        problems.append("Password must contain at least one special character")
    if any(p.search(password) for p in _COMMON_PATTERNS):
        problems.append("Password contains common patterns that should be avoided")
    return problems
