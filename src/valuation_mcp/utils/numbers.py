"""Null-safe numeric helpers.

Financial figures that are unavailable stay None all the way through the
pipeline. These helpers make every division and conversion return None
instead of raising or producing inf/NaN.
"""

import math
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

T = TypeVar("T")


def safe_float(value: Any) -> float | None:
    """Convert to a finite float or return None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(result):
        return None
    return result


def safe_div(numerator: float | None, denominator: float | None) -> float | None:
    """Divide, returning None for missing inputs, zero denominators or non-finite results."""
    if numerator is None or denominator is None or denominator == 0:
        return None
    result = numerator / denominator
    return result if math.isfinite(result) else None


def safe_round(value: float | None, decimals: int) -> float | None:
    """Round to decimals or return None."""
    if value is None:
        return None
    return round(value, decimals)


def is_positive(value: float | None) -> bool:
    """True when value is a finite number > 0."""
    return value is not None and math.isfinite(value) and value > 0


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def first_available(candidates: Iterable[Callable[[], T | None]]) -> T | None:
    """
    Evaluate candidate computations lazily and return the first non-None result.

    Each candidate is a zero-argument callable, so later fallbacks are only
    computed when earlier ones are unavailable.
    """
    for candidate in candidates:
        result = candidate()
        if result is not None:
            return result
    return None


def median(values: Iterable[float]) -> float | None:
    """Median of the given values, None when empty."""
    ordered = sorted(values)
    if not ordered:
        return None
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2
