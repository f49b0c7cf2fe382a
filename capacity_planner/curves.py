from __future__ import annotations

import math
from typing import Dict, Iterable, List, Sequence

# Named shapes for spreading a scope item's hours across its periods.
NAMED_CURVES: Dict[str, Sequence[float]] = {
    "front_loaded": (3.0, 2.0, 1.0),
    "back_loaded": (1.0, 2.0, 3.0),
    "bell": (1.0, 3.0, 1.0),
}


def normalize_curve(seq: Iterable[float]) -> List[float]:
    values = [float(x) for x in seq]
    if not values:
        raise ValueError("curve must contain at least one value")
    if any(v < 0 for v in values):
        raise ValueError("curve values must be non-negative")
    total = sum(values)
    if total <= 0:
        raise ValueError("curve values must sum to a positive number")
    return [v / total for v in values]


def uniform_curve(size: int) -> List[float]:
    if size <= 0:
        raise ValueError("uniform curve size must be positive")
    return [1.0 / size] * size


def _cumulative_share(weights: Sequence[float], x: float) -> float:
    """Share of a piecewise-constant curve that lies left of x in [0, 1]."""
    if x <= 0:
        return 0.0
    if x >= 1:
        return 1.0
    scaled = x * len(weights)
    idx = int(math.floor(scaled))
    return sum(weights[:idx]) + weights[idx] * (scaled - idx)


def resample_curve(base: Sequence[float], buckets: int) -> List[float]:
    if buckets <= 0:
        raise ValueError("requested bucket count must be positive")
    weights = normalize_curve(base)
    if buckets == len(weights):
        return weights
    shares = [
        _cumulative_share(weights, (idx + 1) / buckets) - _cumulative_share(weights, idx / buckets)
        for idx in range(buckets)
    ]
    return normalize_curve(shares)


def resolve_curve(spec: object, buckets: int) -> List[float]:
    if isinstance(spec, str):
        key = spec.lower()
        if key == "uniform":
            return uniform_curve(buckets)
        if key in NAMED_CURVES:
            return resample_curve(NAMED_CURVES[key], buckets)
        raise ValueError(f"unsupported curve keyword '{spec}'")
    if isinstance(spec, Sequence):
        return resample_curve(list(spec), buckets)
    raise TypeError("curve spec must be a sequence of floats or a curve name")


def distribute_over_periods(spec: object, period_ids: Sequence[str]) -> Dict[str, float]:
    """Map period ids to the fractions of a resolved curve."""
    if not period_ids:
        raise ValueError("curve distribution needs at least one period")
    weights = resolve_curve(spec, len(period_ids))
    return {period_id: weight for period_id, weight in zip(period_ids, weights)}
