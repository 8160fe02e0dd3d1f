# src/invokta_session/passwords.py

import re

MIN_LENGTH = 8

_CHECKS = (
    lambda p: len(p) >= MIN_LENGTH,
    lambda p: re.search(r"[A-Z]", p) is not None,
    lambda p: re.search(r"[a-z]", p) is not None,
    lambda p: re.search(r"[0-9]", p) is not None,
    lambda p: re.search(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]", p) is not None,
)

LABELS = ("Very Weak", "Weak", "Fair", "Good", "Strong")


def password_strength(password: str) -> int:
    """Score from 0 to 4: one point per satisfied rule, capped at 4."""
    if not password:
        return 0
    return min(sum(1 for check in _CHECKS if check(password)), 4)


def strength_label(score: int) -> str:
    if 0 <= score < len(LABELS):
        return LABELS[score]
    return ""
