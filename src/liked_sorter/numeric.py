from __future__ import annotations

import math
from typing import Sequence

import numpy as np


def clamp(value: float, low: float, high: float) -> float:
    """Saturate ``value`` into ``[low, high]``. NaN collapses to ``low``."""
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return float(np.mean(np.asarray(values, dtype=float)))


def squared_distance(a: Sequence[float], b: Sequence[float]) -> float:
    left = np.asarray(a, dtype=float)
    right = np.asarray(b, dtype=float)
    if left.shape != right.shape:
        raise ValueError(f"Vector dimensions differ: {left.shape} vs {right.shape}")
    diff = left - right
    return float(np.dot(diff, diff))


def zscore(matrix: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Standardize each column to zero mean and unit population variance.

    Columns whose standard deviation is zero or non-finite are divided by 1
    instead, so constant dimensions come out as all zeros rather than NaN.
    Returns ``(standardized, means, stds)``.
    """

    data = np.asarray(matrix, dtype=float)
    means = data.mean(axis=0)
    stds = data.std(axis=0)
    stds = np.where(np.isfinite(stds) & (stds != 0.0), stds, 1.0)
    return (data - means) / stds, means, stds
