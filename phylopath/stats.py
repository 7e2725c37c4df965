"""
Model-comparison statistics.

    C     = -2 * sum(log p_i)                  Fisher's combined test
    p     = 1 - F_chisq(2k)(C)                  1 by convention when k == 0
    CICc  = C + 2q * n / (n - q - 1)            q = variables + edges
    l     = exp(-delta / 2)                     delta = CICc - min(CICc)
    w     = l / sum(l)
"""
from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from scipy import stats

from .utils.logging_utils import get_logger

log = get_logger("phylopath.stats")


def c_stat(p_values: Sequence[float]) -> float:
    """Fisher's C; 0 for an empty basis set, inf if any p-value is 0."""
    p = np.asarray(p_values, dtype=float)
    if p.size == 0:
        return 0.0
    if np.any((p < 0) | (p > 1)) or np.any(np.isnan(p)):
        raise ValueError(f"p-values must lie in [0, 1]; got {p.tolist()}")
    with np.errstate(divide="ignore"):
        return float(-2.0 * np.log(p).sum())


def c_p(C: float, k: int) -> float:
    """p-value of C against a chi-square with 2k degrees of freedom."""
    if k == 0:
        return 1.0
    return float(stats.chi2.sf(C, 2 * k))


def cicc(C: float, q: int, n: int) -> float:
    """
    Small-sample corrected information criterion. Infinite when the model
    has too many parameters for the sample (n - q - 1 <= 0).
    """
    denom = n - q - 1
    if denom <= 0:
        log.warning("CICc undefined for q=%d parameters and n=%d observations; using inf.", q, n)
        return math.inf
    return float(C + 2.0 * q * (n / denom))


def rel_likelihood(delta: Sequence[float]) -> np.ndarray:
    return np.exp(-0.5 * np.asarray(delta, dtype=float))


def weights(l: Sequence[float]) -> np.ndarray:
    l = np.asarray(l, dtype=float)
    return l / l.sum()
