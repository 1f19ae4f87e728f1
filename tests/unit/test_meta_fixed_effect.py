"""Unit tests for fixed-effect aggregation and Cochran's Q."""

from typing import List, Sequence

import pytest
from scipy import stats

from hetmeta.core.errors import DegenerateModel
from hetmeta.core.models import HarmonizedEffect, MeasureKind
from hetmeta.meta.fixed_effect import aggregate


def make_effects(yi: Sequence[float], vi: Sequence[float]) -> List[HarmonizedEffect]:
    """Helper to construct harmonized effects directly from (y, v) pairs."""
    return [
        HarmonizedEffect(
            study_id=f"s{i}",
            label=f"Study {i}",
            measure=MeasureKind.SMD,
            effect=y,
            variance=v,
            n=100,
            raw_effect=y,
            correction=1.0,
        )
        for i, (y, v) in enumerate(zip(yi, vi), start=1)
    ]


class TestAggregate:
    """Tests for the inverse-variance aggregation."""

    def test_two_studies(self) -> None:
        """Test weights, pooled mean, Q and its p-value."""
        fixed = aggregate(make_effects([0.0, 1.0], [1.0, 1.0]))
        assert fixed.k == 2
        assert fixed.weights == (1.0, 1.0)
        assert fixed.pooled_effect == pytest.approx(0.5)
        assert fixed.standard_error == pytest.approx(0.5 ** 0.5)
        assert fixed.q == pytest.approx(0.5)
        assert fixed.df == 1
        assert fixed.q_pvalue == pytest.approx(stats.chi2.sf(0.5, 1))

    def test_precise_study_dominates(self) -> None:
        """Test the pooled mean is pulled toward the low-variance study."""
        fixed = aggregate(make_effects([0.0, 1.0], [0.01, 1.0]))
        assert fixed.pooled_effect == pytest.approx(1.0 / 101)

    def test_contributions_sum_to_q(self) -> None:
        """Test per-study contributions add up to Q."""
        fixed = aggregate(make_effects([0.1, 0.4, 0.9, -0.2], [0.05, 0.02, 0.1, 0.04]))
        assert sum(fixed.contributions) == pytest.approx(fixed.q)
        assert all(c >= 0 for c in fixed.contributions)

    def test_single_study_is_degenerate(self) -> None:
        """Test k = 1 gives Q = 0 and df = 0 without an error."""
        fixed = aggregate(make_effects([0.3], [0.1]))
        assert fixed.q == 0.0
        assert fixed.df == 0
        assert fixed.q_pvalue is None
        assert fixed.pooled_effect == 0.3
        assert fixed.contributions == (0.0,)

    def test_empty_raises(self) -> None:
        """Test no studies is an error."""
        with pytest.raises(DegenerateModel):
            aggregate([])
