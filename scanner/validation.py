"""
Boundary checks for numbers arriving from platform payloads.

Every price and size a provider reads goes through parse_price/parse_size;
the depth and calculator code assumes what passes here is finite and in
range. Failures raise ValueError naming the offending field.
"""

from __future__ import annotations

import math


def _require_finite(value: float, context: str) -> float:
    if math.isnan(value):
        raise ValueError(f"Invalid {context}: NaN")
    if math.isinf(value):
        raise ValueError(f"Invalid {context}: Inf")
    if value < 0.0:
        raise ValueError(f"Invalid {context}: negative value {value}")
    return value


def validate_price(p: float, context: str = "price") -> float:
    """Probability-style price: finite and within [0, 1]."""
    _require_finite(p, context)
    if p > 1.0:
        raise ValueError(f"Invalid {context}: {p} out of range [0.0, 1.0]")
    return p


def validate_size(s: float, context: str = "size") -> float:
    """Volume, liquidity or contract count: finite and non-negative."""
    return _require_finite(s, context)


def _to_float(raw: object, context: str) -> float:
    if isinstance(raw, (list, tuple, dict)):
        raise ValueError(f"Invalid {context}: {raw!r}")
    try:
        return float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid {context}: {raw!r}") from e


def parse_price(raw: object, context: str = "price") -> float:
    """Numbers and numeric strings ("0.42"); anything else raises."""
    return validate_price(_to_float(raw, context), context)


def parse_size(raw: object, context: str = "size") -> float:
    """Like parse_price, but a missing value (None or "") reads as 0."""
    if raw is None or raw == "":
        return 0.0
    return validate_size(_to_float(raw, context), context)
