"""Value coercion helpers used when decoding loosely-typed input.

Bundles and remote rows arrive as JSON written by other tools (or by
hand), so every decoder funnels values through these helpers instead of
trusting types.
"""

from __future__ import annotations

import math
from typing import Any


def coerce_number(value: Any) -> float | int | None:
    """Return a finite number or None.

    Booleans are not numbers here. Numeric strings are parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return int(parsed) if parsed.is_integer() and "." not in text else parsed
    return None


def coerce_str(value: Any) -> str | None:
    """Return the value if it is a string, else None (no trimming)."""
    return value if isinstance(value, str) else None


def coerce_trimmed(value: Any) -> str | None:
    """Return a trimmed non-empty string or None."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def coerce_timestamp(value: Any, default: int) -> int:
    number = coerce_number(value)
    return int(number) if number is not None else default


def coerce_tags(value: Any) -> list[str] | None:
    """Trim tags, drop blanks, keep first occurrence order."""
    if not isinstance(value, list):
        return None
    seen: set[str] = set()
    out: list[str] = []
    for raw in value:
        tag = str(raw if raw is not None else "").strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        out.append(tag)
    return out


def coerce_specs(value: Any) -> dict[str, str | int | float | bool | None] | None:
    """Keep only scalar values of a free-form key/value map."""
    if not isinstance(value, dict):
        return None
    out: dict[str, str | int | float | bool | None] = {}
    for key, raw in value.items():
        name = str(key).strip()
        if not name:
            continue
        if raw is None or isinstance(raw, (str, bool)):
            out[name] = raw
        elif isinstance(raw, (int, float)):
            out[name] = raw if math.isfinite(raw) else None
    return out
