"""Clamp numeric fields into the fixed-precision storage format."""

import math
from typing import Any, Dict, Optional

# Stored as NUMERIC(4, 3): three decimal digits, magnitude below 10
STORAGE_PRECISION = 3
STORAGE_CEILING = 9.999

# Payback is stored in years with its own sentinel cap
PAYBACK_SENTINEL = 99.0


def finite_float(value: Any) -> Optional[float]:
    """Best-effort float conversion; None for anything non-numeric or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def clamp(
    value: Any,
    min_value: float = 0.0,
    max_value: float = STORAGE_CEILING,
    default: float = 0.0,
) -> float:
    """
    Clamp a value into [min_value, max_value] at storage precision.

    Non-numeric, NaN and infinite inputs map to ``default`` rather than
    raising, so a provider can never push an unstorable value downstream.

    Args:
        value: Raw value (number, numeric string, or anything else)
        min_value: Inclusive lower bound
        max_value: Inclusive upper bound
        default: Replacement for unusable input

    Returns:
        Float rounded to STORAGE_PRECISION decimals and within bounds
    """
    number = finite_float(value)
    if number is None:
        number = default
    number = max(min_value, min(max_value, number))
    rounded = round(number, STORAGE_PRECISION)
    # Rounding can step past a bound that has more than three decimals
    return max(min_value, min(max_value, rounded))


def clamp_unit(value: Any, default: float = 0.0) -> float:
    """Clamp a score into [0, 1]."""
    return clamp(value, 0.0, 1.0, default)


def clamp_fields(
    payload: Dict[str, Any],
    fields: Dict[str, float],
    default: float = 0.0,
) -> Dict[str, float]:
    """
    Clamp the named numeric fields that are present in a payload.

    Args:
        payload: Parsed provider object
        fields: Field name -> inclusive upper bound
        default: Replacement for unusable values

    Returns:
        Dict of field -> clamped float, for fields present in the payload
    """
    return {
        name: clamp(payload[name], 0.0, upper, default)
        for name, upper in fields.items()
        if name in payload
    }
