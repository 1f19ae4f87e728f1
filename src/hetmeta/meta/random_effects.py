"""Random-effects pooling with Knapp-Hartung inference.

:class:`RandomEffectsFitter` takes the harmonized effects, estimates
tau² by REML (see :mod:`hetmeta.meta.reml`) and produces a
:class:`PooledModel`.  Inference uses the Hartung-Knapp-Sidik-Jonkman
adjustment: the standard error is inflated by the weighted residual
variance (never deflated) and the confidence interval and test use a
t-distribution with ``k - 1`` degrees of freedom.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from scipy import stats

from ..config.settings import settings
from ..core.errors import DegenerateModel, NonConvergence
from ..core.models import FixedEffectSummary, HarmonizedEffect, PooledModel
from ..utils.logging import get_logger
from .fixed_effect import aggregate, effect_arrays
from .reml import estimate_tau2

logger = get_logger(__name__)


def i_squared(q: float, df: int) -> float:
    """Proportion of variability due to heterogeneity, in percent."""
    if q <= df or q <= 0:
        return 0.0
    return 100.0 * (q - df) / q


class RandomEffectsFitter:
    """Fit the REML random-effects model to harmonized effects."""

    def __init__(
        self,
        level: Optional[float] = None,
        tol: Optional[float] = None,
        max_iter: Optional[int] = None,
        strict_convergence: Optional[bool] = None,
    ) -> None:
        self.level = settings.confidence_level if level is None else level
        self.tol = settings.reml_tol if tol is None else tol
        self.max_iter = settings.reml_max_iter if max_iter is None else max_iter
        self.strict_convergence = (
            settings.strict_convergence if strict_convergence is None else strict_convergence
        )

    def fit(
        self,
        effects: Sequence[HarmonizedEffect],
        fixed: Optional[FixedEffectSummary] = None,
    ) -> PooledModel:
        """Estimate tau², the pooled effect and its adjusted inference.

        Args:
            effects: Harmonized effects, in study order.
            fixed: Fixed-effect aggregation of the same effects; computed
                when not supplied.

        Raises:
            DegenerateModel: no effects were supplied.
            NonConvergence: REML hit its iteration cap and the fitter is
                strict about convergence.
        """
        if not effects:
            raise DegenerateModel("Cannot fit a random-effects model to zero studies")
        if fixed is None:
            fixed = aggregate(effects)
        yi, vi = effect_arrays(effects)
        k = len(yi)
        if k == 1:
            return self._fit_single(yi[0], vi[0])

        tau_fit = estimate_tau2(yi, vi, tol=self.tol, max_iter=self.max_iter)
        if not tau_fit.converged:
            if self.strict_convergence:
                raise NonConvergence(
                    last_tau2=tau_fit.tau2,
                    iterations=tau_fit.iterations,
                    last_step=tau_fit.last_step,
                )
            logger.warning(
                f"REML did not converge after {tau_fit.iterations} iterations; "
                f"reporting last iterate tau2={tau_fit.tau2:.6g}"
            )
        tau2 = tau_fit.tau2

        wi = 1.0 / (vi + tau2)
        mu = float(np.sum(wi * yi) / np.sum(wi))
        se0 = float(np.sqrt(1.0 / np.sum(wi)))

        # Knapp-Hartung scaling, truncated so it never shrinks the SE
        df_t = k - 1
        c = float(np.sum(wi * (yi - mu) ** 2) / df_t)
        se = float(se0 * np.sqrt(max(c, 1.0)))

        alpha = 1 - self.level
        t_crit = float(stats.t.ppf(1 - alpha / 2, df_t))
        t_stat = mu / se
        p_value = float(2 * stats.t.sf(abs(t_stat), df_t))

        pi_low: Optional[float] = None
        pi_high: Optional[float] = None
        if k >= 3:
            t_pi = float(stats.t.ppf(1 - alpha / 2, k - 2))
            half = t_pi * np.sqrt(se ** 2 + tau2)
            pi_low, pi_high = mu - half, mu + half

        model = PooledModel(
            k=k,
            tau2=tau2,
            tau=float(np.sqrt(tau2)),
            pooled_effect=mu,
            standard_error=se,
            standard_error_unadjusted=se0,
            ci_low=mu - t_crit * se,
            ci_high=mu + t_crit * se,
            test_statistic=float(t_stat),
            test_df=df_t,
            p_value=p_value,
            q=fixed.q,
            df=fixed.df,
            q_pvalue=fixed.q_pvalue,
            i2=i_squared(fixed.q, fixed.df),
            prediction_interval_low=None if pi_low is None else float(pi_low),
            prediction_interval_high=None if pi_high is None else float(pi_high),
            weights=tuple(float(w) for w in 100.0 * wi / np.sum(wi)),
            level=self.level,
            iterations=tau_fit.iterations,
            converged=tau_fit.converged,
        )
        logger.info(
            f"Random-effects fit: k={k}, tau2={tau2:.4f}, mu={mu:.4f} "
            f"[{model.ci_low:.4f}, {model.ci_high:.4f}], I2={model.i2:.1f}%"
        )
        return model

    def _fit_single(self, y: float, v: float) -> PooledModel:
        """Degenerate model for one study.

        Heterogeneity is not estimable and Knapp-Hartung has no degrees of
        freedom, so inference falls back to the normal distribution.
        """
        se = float(np.sqrt(v))
        alpha = 1 - self.level
        z_crit = float(stats.norm.ppf(1 - alpha / 2))
        z = float(y / se)
        logger.info("Only one study supplied; heterogeneity statistics are degenerate")
        return PooledModel(
            k=1,
            tau2=0.0,
            tau=0.0,
            pooled_effect=float(y),
            standard_error=se,
            standard_error_unadjusted=se,
            ci_low=float(y - z_crit * se),
            ci_high=float(y + z_crit * se),
            test_statistic=z,
            test_df=0,
            p_value=float(2 * stats.norm.sf(abs(z))),
            q=0.0,
            df=0,
            q_pvalue=None,
            i2=0.0,
            weights=(100.0,),
            level=self.level,
            iterations=0,
            converged=True,
            degenerate=True,
        )
