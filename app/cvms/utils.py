"""
Small helpers shared by the module services and blueprints.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable


class WorkflowError(ValueError):
    """Raised when a status transition is not allowed from the current state."""


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime(timezone=False) columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def optional_text(value: Any) -> str | None:
    return normalize_text(value) or None


def parse_date(s: Any) -> date | None:
    """Parse YYYY-MM-DD (date inputs); empty -> None, garbage -> ValueError."""
    if s is None:
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    s = str(s).strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def parse_int(s: Any) -> int | None:
    if s is None:
        return None
    if isinstance(s, bool):
        return int(s)
    if isinstance(s, int):
        return s
    s = str(s).strip()
    if not s:
        return None
    return int(s)


def parse_float(s: Any) -> float | None:
    if s is None:
        return None
    if isinstance(s, (int, float)) and not isinstance(s, bool):
        return float(s)
    s = str(s).strip().replace(",", ".")
    if not s:
        return None
    return float(s)


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on", "y", "s", "sim")


def round_half_up(value: float) -> int:
    """Round like JavaScript's Math.round for non-negative inputs (0.5 -> 1)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


def validate_choice(errors: list[ValidationError], field: str, value: str | None, choices: Iterable[str]) -> None:
    choices = tuple(choices)
    if value and value not in choices:
        errors.append(ValidationError(field, f"{field} must be one of: {', '.join(choices)}"))


def validate_date_field(errors: list[ValidationError], payload: dict, field: str) -> None:
    try:
        parse_date(payload.get(field))
    except ValueError:
        errors.append(ValidationError(field, f"{field} must be a date (YYYY-MM-DD)."))


def to_json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def model_to_dict(obj: Any, fields: Iterable[str]) -> dict[str, Any]:
    return {f: to_json_value(getattr(obj, f, None)) for f in fields}


def apply_changes(obj: Any, payload: dict, converters: dict[str, Callable[[Any], Any]]) -> dict[str, dict[str, Any]]:
    """
    Partial update: set every field present in the payload (after conversion)
    and return the {"field": {"old", "new"}} map for the audit trail.
    """
    changes: dict[str, dict[str, Any]] = {}
    for name, convert in converters.items():
        if name not in payload:
            continue
        new = convert(payload.get(name))
        old = getattr(obj, name)
        if new != old:
            changes[name] = {"old": to_json_value(old), "new": to_json_value(new)}
            setattr(obj, name, new)
    return changes
