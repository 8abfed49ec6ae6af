"""Numeric coercion and display formatting shared by the estimators."""

import math

PLACEHOLDER = "--"

_TIME_UNITS = (("d", 86400), ("h", 3600), ("m", 60), ("s", 1))


def as_number(value) -> float | None:
    """Coerce value to a finite float, or None.

    Accepts ints, floats and numeric strings. Booleans, None, NaN and
    infinities are rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def first_number(*values) -> float | None:
    """Return the first value that coerces to a finite number."""
    for value in values:
        num = as_number(value)
        if num is not None:
            return num
    return None


def first_non_null(*values):
    """Return the first value that is not None (0 counts as a value)."""
    for value in values:
        if value is not None:
            return value
    return None


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with exact halves going up (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def format_time(seconds) -> str:
    """Format a duration using its two most significant units.

    >>> format_time(9000)
    '2h 30m'
    >>> format_time(45)
    '45s'
    """
    num = as_number(seconds)
    if num is None or num < 0:
        return PLACEHOLDER

    remaining = int(math.floor(num))
    parts = []
    for suffix, size in _TIME_UNITS:
        amount, remaining = divmod(remaining, size)
        parts.append((amount, suffix))

    for index, (amount, suffix) in enumerate(parts):
        if amount > 0:
            shown = parts[index : index + 2]
            return " ".join(f"{value}{unit}" for value, unit in shown)
    return "0s"


def format_layer_info(current, total) -> str:
    """Render a layer pair; only values above zero count as known."""
    has_current = current is not None and current > 0
    has_total = total is not None and total > 0

    if has_current and has_total:
        return f"{int(current)} / {int(total)}"
    if has_current:
        return f"{int(current)} / {PLACEHOLDER}"
    if has_total:
        return f"{PLACEHOLDER} / {int(total)}"
    return PLACEHOLDER


def format_temperature(current, target) -> str:
    return f"{round_half_up(current)}°C / {round_half_up(target)}°C"


def format_filename(filename: str | None) -> str | None:
    """Display form of a file path: basename without the .gcode extension."""
    if not filename:
        return None
    name = filename.split("/")[-1]
    if name.lower().endswith(".gcode"):
        name = name[: -len(".gcode")]
    return name
