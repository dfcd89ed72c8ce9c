from __future__ import annotations

from datetime import date
from typing import Any, Mapping

from .errors import ValidationError
from .time_utils import to_calendar_date


def coerce_int(name: str, value: Any, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for request input.

    Accepts ints and plain digit strings; rejects bools, floats, decimals
    and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15") and decimals (e.g., "12.5")
        if 'e' in stripped.lower() or '.' in stripped:
            raise ValidationError(f"{name} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return result


def optional_int(args: Mapping[str, Any], name: str) -> int | None:
    value = args.get(name)
    if value is None or value == "":
        return None
    return coerce_int(name, value)


def optional_date(args: Mapping[str, Any], name: str) -> date | None:
    value = args.get(name)
    if value is None or value == "":
        return None
    parsed = to_calendar_date(value)
    if parsed is None:
        raise ValidationError(f"{name} must be a YYYY-MM-DD date", details={name: value})
    return parsed


def flag(args: Mapping[str, Any], name: str, default: bool = False) -> bool:
    value = args.get(name)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def date_list_arg(args) -> list[str]:
    """
    Dates from a query string: repeated `date=` params and/or a
    comma-separated `dates=` param, in the order given.
    """
    raw: list[str] = []
    if hasattr(args, "getlist"):
        raw.extend(args.getlist("date"))
    elif args.get("date"):
        raw.append(args.get("date"))
    if args.get("dates"):
        raw.extend(part.strip() for part in str(args.get("dates")).split(",") if part.strip())
    return raw
