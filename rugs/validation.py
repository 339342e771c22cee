"""Input checks shared by the stores; all raise ``ValidationError``."""

from __future__ import annotations

from typing import Any

from rugs.errors import ValidationError

# SQLite INTEGER is a signed 64-bit value
MAX_INT = 2**63 - 1


def require_int(value: Any, name: str, minimum: int = 0) -> int:
    # bool is an int subclass and never a meaningful number here
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if value > MAX_INT:
        raise ValidationError(f"{name} must be <= {MAX_INT}")
    return value


def require_change_number(value: Any, name: str = "change_number") -> int:
    return require_int(value, name, minimum=0)


def require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value.strip()


def require_change_range(
    min_change: Any, max_change: Any | None
) -> tuple[int, int | None]:
    low = require_change_number(min_change, "min_change")
    if max_change is None:
        return low, None
    high = require_change_number(max_change, "max_change")
    if high < low:
        raise ValidationError("max_change must be >= min_change")
    return low, high
