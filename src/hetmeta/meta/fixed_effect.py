"""Inverse-variance fixed-effect aggregation and Cochran's Q."""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
from scipy import stats

from ..core.errors import DegenerateModel
from ..core.models import FixedEffectSummary, HarmonizedEffect


def effect_arrays(effects: Sequence[HarmonizedEffect]) -> Tuple[np.ndarray, np.ndarray]:
    """Effects and variances as float arrays, in study order."""
    yi = np.array([es.effect for es in effects], dtype=float)
    vi = np.array([es.variance for es in effects], dtype=float)
    return yi, vi


def aggregate(effects: Sequence[HarmonizedEffect]) -> FixedEffectSummary:
    """Compute fixed-effect weights, pooled mean and the Q statistic.

    A single study yields ``Q = 0`` and ``df = 0`` with no p-value.
    """
    if not effects:
        raise DegenerateModel("No harmonized effects to aggregate")
    yi, vi = effect_arrays(effects)
    weights = 1.0 / vi
    if len(yi) == 1:
        pooled = yi[0]
        contributions = np.zeros(1)
    else:
        pooled = np.sum(weights * yi) / np.sum(weights)
        contributions = weights * (yi - pooled) ** 2
    Q = float(np.sum(contributions))
    df = len(yi) - 1
    q_pvalue = float(stats.chi2.sf(Q, df)) if df > 0 else None
    return FixedEffectSummary(
        k=len(yi),
        weights=tuple(float(w) for w in weights),
        pooled_effect=float(pooled),
        standard_error=float(np.sqrt(1.0 / np.sum(weights))),
        q=Q,
        df=df,
        q_pvalue=q_pvalue,
        contributions=tuple(float(c) for c in contributions),
    )
