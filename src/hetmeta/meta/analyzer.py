"""Statistical meta‑analysis and synthesis.

This module defines the :class:`MetaAnalyzer` class, which runs the
whole estimation pipeline on a batch of studies: harmonization to
Hedges' g, fixed-effect aggregation, the REML random-effects fit with
Knapp–Hartung inference and the Baujat influence diagnostics.  It also
builds data frames that forest and Baujat plot renderers can consume
directly.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

import pandas as pd

from ..core.errors import InsufficientStudies
from ..core.models import MetaAnalysisResult, StudyRecord
from ..utils.logging import get_logger
from .fixed_effect import aggregate
from .harmonizer import harmonize_all
from .influence import InfluenceAnalyzer, outliers
from .random_effects import RandomEffectsFitter

logger = get_logger(__name__)


class MetaAnalyzer:
    """Perform a random-effects meta‑analysis on raw study records.

    The analyser delegates each stage to its component and bundles the
    immutable outputs into a :class:`MetaAnalysisResult`.  Influence
    diagnostics are reported as unavailable, rather than failing the run,
    when fewer than three studies survive harmonization.
    """

    def __init__(
        self,
        fitter: Optional[RandomEffectsFitter] = None,
        continuity: Optional[float] = None,
    ) -> None:
        self.fitter = fitter or RandomEffectsFitter()
        self.influence = InfluenceAnalyzer(self.fitter)
        self.continuity = continuity

    def run(self, studies: Iterable[StudyRecord], skip_failures: bool = False) -> MetaAnalysisResult:
        """Run the full pipeline.

        Args:
            studies: Raw study records in display order.
            skip_failures: Drop studies that cannot be harmonized (they
                are listed in ``result.failures``) instead of raising.

        Returns:
            The harmonized effects, fixed and random-effects summaries and
            influence records.
        """
        effects, failures = harmonize_all(studies, skip_failures=skip_failures, continuity=self.continuity)
        fixed = aggregate(effects)
        model = self.fitter.fit(effects, fixed)
        influence = None
        note = None
        try:
            influence = self.influence.analyze(effects, model, fixed)
        except InsufficientStudies as exc:
            note = str(exc)
            logger.info(f"Influence diagnostics unavailable: {exc}")
        return MetaAnalysisResult(
            effects=effects,
            fixed=fixed,
            model=model,
            influence=influence,
            influence_note=note,
            failures=failures,
        )

    def summary(self, result: MetaAnalysisResult) -> Dict:
        """Headline numbers for a textual report."""
        effects = [es.effect for es in result.effects]
        model = result.model
        return {
            "n_studies": model.k,
            "total_participants": result.total_participants,
            "effect_min": min(effects),
            "effect_max": max(effects),
            "effect_mean": sum(effects) / len(effects),
            "pooled_effect": model.pooled_effect,
            "ci_lower": model.ci_low,
            "ci_upper": model.ci_high,
            "t_statistic": model.test_statistic,
            "p_value": model.p_value,
            "significant": model.significant,
            "tau_squared": model.tau2,
            "I_squared": model.i2,
            "Q": model.q,
            "Q_df": model.df,
            "Q_pvalue": model.q_pvalue,
            "interpretation": model.heterogeneity_interpretation,
            "outliers": [r.label for r in outliers(result.influence or [])],
            "excluded": [f.label or f.study_id for f in result.failures],
        }

    def forest_plot_data(self, result: MetaAnalysisResult) -> pd.DataFrame:
        """Create a DataFrame for forest plot visualisation."""
        rows = []
        for es, weight in zip(result.effects, result.model.weights):
            ci_lower, ci_upper = es.confidence_interval(result.model.level)
            rows.append({
                "study": es.label,
                "effect": es.effect,
                "ci_lower": ci_lower,
                "ci_upper": ci_upper,
                "n": es.n,
                "weight": weight,
                "type": "study",
            })
        rows.append({
            "study": "Pooled",
            "effect": result.model.pooled_effect,
            "ci_lower": result.model.ci_low,
            "ci_upper": result.model.ci_high,
            "n": result.total_participants,
            "weight": sum(result.model.weights),
            "type": "pooled",
        })
        return pd.DataFrame(rows)

    def baujat_plot_data(self, result: MetaAnalysisResult) -> pd.DataFrame:
        """Create a DataFrame of Baujat coordinates, one row per study."""
        columns = ["study", "x", "y", "outlier"]
        if not result.influence:
            return pd.DataFrame(columns=columns)
        flagged = {r.study_id for r in outliers(result.influence)}
        return pd.DataFrame(
            [
                {
                    "study": r.label,
                    "x": r.heterogeneity_contribution,
                    "y": r.leave_one_out_influence,
                    "outlier": r.study_id in flagged,
                }
                for r in result.influence
            ],
            columns=columns,
        )
