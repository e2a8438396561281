"""Lightweight validation helpers shared by models and services."""

import re
from typing import Any

_EMAIL_PATTERN = re.compile(r"^[^@\s<>]+@[^@\s<>]+\.[^@\s<>]+$")


def ensure_present(value: Any, field: str) -> None:
    """Raise ValueError if value is falsy."""
    if value in (None, "", []):
        raise ValueError(f"{field} is required")


def normalize_email_address(value: str) -> str:
    """Lower-case and strip an address; reject anything that is not user@domain."""
    cleaned = (value or "").strip().strip("<>").lower()
    if not _EMAIL_PATTERN.match(cleaned):
        raise ValueError(f"invalid email address: {value!r}")
    return cleaned


def clamp_unit(value: float) -> float:
    """Clamp a score into the closed unit interval."""
    return max(0.0, min(1.0, float(value)))
