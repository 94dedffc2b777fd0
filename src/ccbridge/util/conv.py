from __future__ import annotations

import math
from typing import Any

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def coerce_bool(value: Any, *, default: bool = False) -> bool:
    """Coerce a loosely-typed value into a boolean.

    Config values arrive as text from the Store ("true"/"false") or as YAML
    scalars from settings.yaml. Unknown strings map to `default` so that a
    corrupt value never flips a flag on.
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
        except Exception:
            return bool(default)
    return bool(value)


def coerce_int(value: Any, *, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return int(default)
    try:
        return int(str(value).strip())
    except Exception:
        return int(default)


def coerce_float(value: Any, *, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return float(default)
    try:
        out = float(str(value).strip())
    except Exception:
        return float(default)
    if math.isnan(out) or math.isinf(out):
        return float(default)
    return out
