"""Byte size parsing and formatting."""

import re

UNITS = "BKMGTPE"

_SIZE_RE = re.compile(r"^([\d.]+)\s?([BKMGTPE]?)B?$", re.IGNORECASE)


def byte_number(value: str | int) -> int:
    """Convert a size string like ``120M`` or ``3.4G`` to a number of bytes.

    Plain integers (or digit strings) are returned as-is. Raises ValueError
    for anything that doesn't look like a size.
    """
    if isinstance(value, int):
        return value
    text = str(value).strip()
    match = _SIZE_RE.match(text)
    if not match:
        raise ValueError(f"Invalid size string: {value!r}")
    number = float(match.group(1))
    unit = (match.group(2) or "B").upper()
    return int(number * 1024 ** UNITS.index(unit))


def byte_string(num: float, precision: int = 2) -> str:
    """Human readable size, e.g. ``1.50 MB``."""
    num = float(num)
    for unit in UNITS[:-1]:
        if abs(num) < 1024:
            break
        num /= 1024
    else:
        unit = UNITS[-1]
    if unit == "B":
        return f"{int(num)} B"
    return f"{num:.{precision}f} {unit}B"
