"""Restricted maximum likelihood estimation of the between-study variance.

The estimator is Fisher scoring on the restricted log-likelihood of the
random-effects model ``y_i ~ N(mu, v_i + tau2)``.  For a single
intercept the score and expected information reduce to sums over the
weights ``w_i = 1 / (v_i + tau2)``::

    P y        = w * (y - mu_hat)
    score      = (y'PPy - tr(P)) / 2
    info       = tr(PP) / 2
    tau2_next  = tau2 + (y'PPy - tr(P)) / tr(PP)

Steps that would make tau2 negative are halved until the iterate stays
on the boundary side, so the estimate is never negative.  When the
moment-based start is positive the iteration is repeated from zero and
the maximum with the larger restricted likelihood is kept.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..config.settings import settings
from ..core.errors import NonConvergence
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Tau2Fit:
    """Outcome of the REML iteration."""

    tau2: float
    iterations: int
    converged: bool
    last_step: float = 0.0


def restricted_log_likelihood(tau2: float, yi: Sequence[float], vi: Sequence[float]) -> float:
    """Restricted log-likelihood of tau2, up to an additive constant."""
    yi = np.asarray(yi, dtype=float)
    vi = np.asarray(vi, dtype=float)
    wi = 1.0 / (vi + tau2)
    mu = np.sum(wi * yi) / np.sum(wi)
    return float(-0.5 * (np.sum(np.log(vi + tau2)) + np.log(np.sum(wi)) + np.sum(wi * (yi - mu) ** 2)))


def _starting_value(yi: np.ndarray, vi: np.ndarray) -> float:
    # Hedges (unweighted method of moments) estimate
    return max(0.0, float(np.var(yi, ddof=1) - np.mean(vi)))


def _scoring_step(tau2: float, yi: np.ndarray, vi: np.ndarray) -> float:
    wi = 1.0 / (vi + tau2)
    sw = np.sum(wi)
    mu = np.sum(wi * yi) / sw
    py = wi * (yi - mu)
    sw2 = np.sum(wi ** 2)
    tr_p = sw - sw2 / sw
    tr_pp = sw2 - 2 * np.sum(wi ** 3) / sw + (sw2 / sw) ** 2
    return float((np.sum(py ** 2) - tr_p) / tr_pp)


def estimate_tau2(
    yi: Sequence[float],
    vi: Sequence[float],
    tol: Optional[float] = None,
    max_iter: Optional[int] = None,
) -> Tau2Fit:
    """Run the REML iteration and report how it ended.

    Args:
        yi: Observed effects.
        vi: Their sampling variances (all positive).
        tol: Stop when successive iterates differ by less than this.
        max_iter: Iteration cap.

    Returns:
        A :class:`Tau2Fit`; ``converged`` is False when the cap was hit,
        in which case ``tau2`` is the last iterate.
    """
    tol = settings.reml_tol if tol is None else tol
    max_iter = settings.reml_max_iter if max_iter is None else max_iter
    yi = np.asarray(yi, dtype=float)
    vi = np.asarray(vi, dtype=float)
    if len(yi) < 2:
        return Tau2Fit(tau2=0.0, iterations=0, converged=True)

    start = _starting_value(yi, vi)
    fit = _score(start, yi, vi, tol, max_iter)
    if start > 0.0 and fit.converged:
        # The likelihood can have several peaks; keep the higher of the
        # maxima reached from the moment estimate and from the boundary.
        other = _score(0.0, yi, vi, tol, max_iter)
        if other.converged and restricted_log_likelihood(other.tau2, yi, vi) > restricted_log_likelihood(
            fit.tau2, yi, vi
        ):
            logger.debug(f"REML restart from zero found a higher maximum at tau2={other.tau2:.6g}")
            fit = other
    if fit.converged:
        logger.debug(f"REML converged after {fit.iterations} iterations: tau2={fit.tau2:.6g}")
    return fit


def _score(tau2: float, yi: np.ndarray, vi: np.ndarray, tol: float, max_iter: int) -> Tau2Fit:
    """Fisher scoring from one starting value."""
    step = float("inf")
    for iteration in range(1, max_iter + 1):
        adj = _scoring_step(tau2, yi, vi)
        if tau2 + adj < 0:
            if tau2 == 0.0:
                # Score points below the boundary; zero is the maximum.
                return Tau2Fit(tau2=0.0, iterations=iteration, converged=True)
            while tau2 + adj < 0:
                adj /= 2
        step = abs(adj)
        tau2 = tau2 + adj
        if step < tol:
            if tau2 < tol:
                tau2 = 0.0
            return Tau2Fit(tau2=tau2, iterations=iteration, converged=True, last_step=step)

    return Tau2Fit(tau2=tau2, iterations=max_iter, converged=False, last_step=step)


def fit_tau2(
    yi: Sequence[float],
    vi: Sequence[float],
    tol: Optional[float] = None,
    max_iter: Optional[int] = None,
) -> float:
    """REML estimate of tau2.

    Raises:
        NonConvergence: the iteration cap was reached; the exception
            carries the last iterate.
    """
    fit = estimate_tau2(yi, vi, tol=tol, max_iter=max_iter)
    if not fit.converged:
        raise NonConvergence(last_tau2=fit.tau2, iterations=fit.iterations, last_step=fit.last_step)
    return fit.tau2
