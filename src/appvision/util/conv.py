from __future__ import annotations

import math
from typing import Any

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def coerce_bool(value: Any, *, default: bool = False) -> bool:
    """Coerce a loosely-typed value into a boolean.

    Values come from YAML settings and environment variables, where "false"
    and "0" arrive as strings. Unknown strings map to the provided default
    instead of bool("false") == True.
    """
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, float):
        if math.isnan(value):
            return bool(default)
        return value != 0.0
    if isinstance(value, str):
        s = value.strip().lower()
        if not s:
            return bool(default)
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
        try:
            return int(s) != 0
        except ValueError:
            return bool(default)
    return bool(value)


def coerce_int(value: Any, *, default: int, minimum: int = 0) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return max(minimum, int(default))
    try:
        v = int(value)
    except (TypeError, ValueError):
        v = int(default)
    return max(minimum, v)


def coerce_float(value: Any, *, default: float, minimum: float = 0.0) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        return max(minimum, float(default))
    try:
        v = float(value)
    except (TypeError, ValueError):
        v = float(default)
    if math.isnan(v):
        v = float(default)
    return max(minimum, v)
