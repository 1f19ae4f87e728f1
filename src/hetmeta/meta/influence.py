"""Per-study influence diagnostics for a Baujat plot.

For each study the analyzer reports two coordinates:

* x: its contribution to Cochran's Q, ``w_i * (y_i - mu_fe)^2``;
* y: how far the pooled estimate moves when the study is dropped,
  ``(mu - mu_(-i))^2 / se_(-i)^2``, using the Knapp-Hartung standard
  error of the leave-one-out refit.

Studies that sit high on both axes drive both the heterogeneity and the
overall result.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from ..core.errors import InsufficientStudies
from ..core.models import FixedEffectSummary, HarmonizedEffect, InfluenceRecord, PooledModel
from ..utils.logging import get_logger
from .fixed_effect import aggregate
from .random_effects import RandomEffectsFitter

logger = get_logger(__name__)

MIN_STUDIES = 3


def leave_one_out(
    effects: Sequence[HarmonizedEffect],
    index: int,
    fitter: Optional[RandomEffectsFitter] = None,
) -> PooledModel:
    """Refit the random-effects model without study ``index``."""
    fitter = fitter or RandomEffectsFitter()
    subset = tuple(es for i, es in enumerate(effects) if i != index)
    return fitter.fit(subset)


class InfluenceAnalyzer:
    """Compute heterogeneity contribution and leave-one-out influence."""

    def __init__(self, fitter: Optional[RandomEffectsFitter] = None) -> None:
        self.fitter = fitter or RandomEffectsFitter()

    def analyze(
        self,
        effects: Sequence[HarmonizedEffect],
        model: PooledModel,
        fixed: Optional[FixedEffectSummary] = None,
    ) -> List[InfluenceRecord]:
        """Return one :class:`InfluenceRecord` per study, in input order.

        Raises:
            InsufficientStudies: fewer than three studies, so each
                leave-one-out refit would have fewer than two.
        """
        k = len(effects)
        if k < MIN_STUDIES:
            raise InsufficientStudies(k, MIN_STUDIES)
        if fixed is None:
            fixed = aggregate(effects)
        effects = tuple(effects)
        records: List[InfluenceRecord] = []
        for i, es in enumerate(effects):
            loo = leave_one_out(effects, i, self.fitter)
            influence = (model.pooled_effect - loo.pooled_effect) ** 2 / loo.standard_error ** 2
            records.append(
                InfluenceRecord(
                    study_id=es.study_id,
                    label=es.label,
                    heterogeneity_contribution=fixed.contributions[i],
                    leave_one_out_influence=float(influence),
                    leave_one_out_effect=loo.pooled_effect,
                    leave_one_out_se=loo.standard_error,
                    leave_one_out_tau2=loo.tau2,
                )
            )
        logger.info(f"Computed influence diagnostics for {k} studies")
        return records


def outliers(records: Sequence[InfluenceRecord]) -> List[InfluenceRecord]:
    """Studies above the mean on both Baujat axes."""
    if not records:
        return []
    mean_x = sum(r.heterogeneity_contribution for r in records) / len(records)
    mean_y = sum(r.leave_one_out_influence for r in records) / len(records)
    return [
        r
        for r in records
        if r.heterogeneity_contribution > mean_x and r.leave_one_out_influence > mean_y
    ]
