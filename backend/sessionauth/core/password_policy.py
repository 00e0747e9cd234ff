from __future__ import annotations

import re
from typing import List

from sessionauth.core.config import settings
from sessionauth.core.errors import ValidationError

COMMON_WEAK_PASSWORDS = {
    "password",
    "password1!",
    "password123",
    "password123!",
    "passw0rd!",
    "p@ssw0rd",
    "p@ssword1",
    "qwerty123!",
    "welcome1!",
    "welcome123!",
    "letmein1!",
    "admin123!",
    "iloveyou1!",
    "abc123!@",
    "changeme1!",
    "trustno1!",
}

_UPPERCASE_RE = re.compile(r"[A-Z]")
_LOWERCASE_RE = re.compile(r"[a-z]")
_NUMBER_RE = re.compile(r"[0-9]")
_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")


def evaluate_password(password: str, *, email: str | None = None) -> List[str]:
    """
    Returns a list of violation codes if the password does not meet policy.
    """
    pw = password or ""
    violations: list[str] = []
    min_length = max(int(settings.PASSWORD_MIN_LENGTH or 0), 1)
    max_length = max(int(settings.PASSWORD_MAX_LENGTH or 0), min_length)

    if len(pw) < min_length:
        violations.append("min_length")
    if len(pw) > max_length:
        violations.append("max_length")
    if not _UPPERCASE_RE.search(pw):
        violations.append("uppercase")
    if not _LOWERCASE_RE.search(pw):
        violations.append("lowercase")
    if not _NUMBER_RE.search(pw):
        violations.append("number")
    if not _SPECIAL_RE.search(pw):
        violations.append("special_char")

    normalized_pw = pw.lower()
    local_part = (email or "").strip().lower().split("@")[0]
    if len(local_part) >= 3 and local_part in normalized_pw:
        violations.append("contains_email")

    if normalized_pw in COMMON_WEAK_PASSWORDS:
        violations.append("denylist_common")

    return violations


def ensure_strong_password(password: str, *, email: str | None = None) -> None:
    violations = evaluate_password(password, email=email)
    if violations:
        raise ValidationError(
            "Password does not meet requirements.",
            details={"code": "WEAK_PASSWORD", "violations": violations},
        )
