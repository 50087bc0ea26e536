"""
Summary statistics following the sentinel convention.

Counts and sums of an empty set are 0; every other statistic of an empty set
is NOT_APPLICABLE, as is a ratio with a zero or undefined denominator.
"""

from typing import Tuple

import numpy as np

from observation.common import NOT_APPLICABLE


def mean_std_min_max(values: np.ndarray) -> Tuple[float, float, float, float]:
    if values.size == 0:
        return NOT_APPLICABLE, NOT_APPLICABLE, NOT_APPLICABLE, NOT_APPLICABLE
    return (
        float(values.mean()),
        float(values.std()),
        float(values.min()),
        float(values.max()),
    )


def count_mean_std_min_max(values: np.ndarray) -> Tuple[float, ...]:
    return (float(values.size),) + mean_std_min_max(values)


def count_sum_mean_std_min_max(values: np.ndarray) -> Tuple[float, ...]:
    mean, std, mn, mx = mean_std_min_max(values)
    return float(values.size), float(values.sum()), mean, std, mn, mx


def min_max(values: np.ndarray) -> Tuple[float, float]:
    if values.size == 0:
        return NOT_APPLICABLE, NOT_APPLICABLE
    return float(values.min()), float(values.max())


def safe_mean(values: np.ndarray) -> float:
    return float(values.mean()) if values.size > 0 else NOT_APPLICABLE


def safe_std(values: np.ndarray) -> float:
    return float(values.std()) if values.size > 0 else NOT_APPLICABLE


def safe_ratio(numerator: float, denominator: float) -> float:
    if np.isnan(numerator) or np.isnan(denominator) or denominator == 0:
        return NOT_APPLICABLE
    return float(numerator) / float(denominator)


def safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Element-wise ratio, NOT_APPLICABLE where the denominator is zero."""
    numerator = np.asarray(numerator, dtype=np.float64)
    denominator = np.asarray(denominator, dtype=np.float64)
    out = np.full(np.broadcast(numerator, denominator).shape, NOT_APPLICABLE)
    np.divide(numerator, denominator, out=out, where=denominator != 0)
    return out
