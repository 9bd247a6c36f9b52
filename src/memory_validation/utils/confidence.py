"""Confidence calculation utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfidenceSignal:
    """A single confidence signal with weight."""

    name: str
    value: float  # Clipped into [0, 1] before use
    weight: float = 1.0


def is_finite_number(value: object) -> bool:
    """Return True for real, finite numbers (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def clip_unit(value: float) -> float:
    """Clip a value into [0, 1]."""
    return max(0.0, min(1.0, value))


def clip_range(value: float, low: float, high: float) -> float:
    """Clip a value into [low, high]."""
    return max(low, min(high, value))


def combine_weighted(signals: list[ConfidenceSignal]) -> float:
    """Combine signals as a weighted sum of clipped values.

    Weights are expected to sum to 1; the result is not renormalised so
    that a config with the documented weights reproduces the documented
    formula exactly.

    Args:
        signals: Confidence signals with weights.

    Returns:
        Combined confidence in [0, 1].
    """
    if not signals:
        return 0.0
    total = sum(clip_unit(s.value) * s.weight for s in signals)
    return clip_unit(total)


def nearest_distance(value: float, points: list[float]) -> float:
    """Distance from value to the closest of the given points."""
    if not points:
        return math.inf
    return min(abs(value - p) for p in points)
