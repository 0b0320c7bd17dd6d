"""
numeric.py — Decimal helpers shared by every computation level.

Grades are carried as Decimal so that round-half-up is exact and repeated
recomputation over the same inputs yields identical values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

import numpy as np


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a score to Decimal. None, NaN, inf and junk become None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, bool):
        return None
    if isinstance(value, (float, np.floating)):
        v = float(value)
        if np.isnan(v) or np.isinf(v):
            return None
        # str() keeps the shortest repr, so 4.6 stays 4.6 and not 4.5999...
        return Decimal(str(v))
    if isinstance(value, (int, np.integer)):
        return Decimal(int(value))
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def round_half_up(value: Decimal, places: int) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def as_float(value: Optional[Decimal]) -> Optional[float]:
    """JSON-safe float for API payloads and exports."""
    if value is None:
        return None
    return float(value)
