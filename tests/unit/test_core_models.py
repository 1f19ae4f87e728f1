"""Unit tests for core data models (StudyRecord, HarmonizedEffect, etc.)."""

import math

import pytest
from pydantic import ValidationError

from hetmeta.core.models import (
    HarmonizedEffect,
    InfluenceRecord,
    MeasureKind,
    PooledModel,
    StudyRecord,
)


def make_effect(**overrides) -> HarmonizedEffect:
    fields = dict(
        study_id="s1",
        label="Selvi 2010",
        measure=MeasureKind.SMD,
        effect=0.5,
        variance=0.04,
        n=60,
        raw_effect=0.51,
        correction=0.987,
    )
    fields.update(overrides)
    return HarmonizedEffect(**fields)


class TestStudyRecord:
    """Tests for StudyRecord model."""

    def test_minimal(self) -> None:
        """Test StudyRecord with only the required fields."""
        study = StudyRecord(study_id="s1", measure="SMD")
        assert study.m1 is None
        assert study.a is None
        assert study.extra == {}
        assert study.display_label == "s1"

    def test_measure_normalized(self) -> None:
        """Test measure names are stripped and upper-cased."""
        assert StudyRecord(study_id="s1", measure=" or ").measure == "OR"
        assert StudyRecord(study_id="s1", measure=MeasureKind.SMD).measure == "SMD"

    def test_unknown_measure_accepted(self) -> None:
        """Test unsupported measures are left for the harmonizer to reject."""
        assert StudyRecord(study_id="s1", measure="rr").measure == "RR"

    def test_nan_becomes_none(self) -> None:
        """Test NaN inputs are treated as absent."""
        study = StudyRecord(study_id="s1", measure="SMD", m1=float("nan"), n1=float("nan"))
        assert study.m1 is None
        assert study.n1 is None

    def test_integral_float_counts(self) -> None:
        """Test spreadsheet floats like 30.0 are accepted as counts."""
        study = StudyRecord(study_id="s1", measure="OR", a=30.0, b=2.0, c=4.0, d=0.0)
        assert study.a == 30
        assert study.d == 0

    def test_non_positive_sample_size_rejected(self) -> None:
        """Test group sizes must be positive."""
        with pytest.raises(ValidationError):
            StudyRecord(study_id="s1", measure="SMD", n1=0)

    def test_negative_count_rejected(self) -> None:
        """Test 2x2 counts cannot be negative."""
        with pytest.raises(ValidationError):
            StudyRecord(study_id="s1", measure="OR", a=-1)

    def test_non_positive_sd_rejected(self) -> None:
        """Test standard deviations must be positive."""
        with pytest.raises(ValidationError):
            StudyRecord(study_id="s1", measure="SMD", sd1=0.0)

    def test_display_label(self) -> None:
        """Test the label is preferred over the identifier."""
        assert StudyRecord(study_id="s1", label="Kara 2016", measure="SMD").display_label == "Kara 2016"


class TestHarmonizedEffect:
    """Tests for HarmonizedEffect model."""

    def test_derived_interval(self) -> None:
        """Test standard error and normal 95% interval."""
        es = make_effect()
        assert es.se == pytest.approx(0.2)
        assert es.ci_low == pytest.approx(0.5 - 1.959964 * 0.2)
        assert es.ci_high == pytest.approx(0.5 + 1.959964 * 0.2)

    def test_interval_at_other_level(self) -> None:
        """Test the interval width follows the requested level."""
        es = make_effect()
        low, high = es.confidence_interval(0.90)
        assert low == pytest.approx(0.5 - 1.644854 * 0.2)
        assert high == pytest.approx(0.5 + 1.644854 * 0.2)

    def test_variance_must_be_positive(self) -> None:
        """Test zero variance is rejected."""
        with pytest.raises(ValidationError):
            make_effect(variance=0.0)

    def test_frozen(self) -> None:
        """Test effects cannot be mutated after creation."""
        es = make_effect()
        with pytest.raises(ValidationError):
            es.effect = 1.0

    def test_round_trip_json(self) -> None:
        """Test the record serializes to JSON and back unchanged."""
        es = make_effect()
        assert HarmonizedEffect.model_validate_json(es.model_dump_json()) == es


class TestPooledModel:
    """Tests for PooledModel helpers."""

    def make_model(self, **overrides) -> PooledModel:
        fields = dict(
            k=5,
            tau2=0.1,
            tau=math.sqrt(0.1),
            pooled_effect=0.4,
            standard_error=0.1,
            standard_error_unadjusted=0.09,
            ci_low=0.12,
            ci_high=0.68,
            test_statistic=4.0,
            test_df=4,
            p_value=0.016,
            q=12.0,
            df=4,
            q_pvalue=0.017,
            i2=66.7,
            weights=(20.0, 20.0, 20.0, 20.0, 20.0),
        )
        fields.update(overrides)
        return PooledModel(**fields)

    def test_interpretation_bands(self) -> None:
        """Test the low, moderate and high bands and their boundaries."""
        assert self.make_model(i2=10.0).heterogeneity_interpretation == "low heterogeneity"
        assert self.make_model(i2=50.0).heterogeneity_interpretation == "low heterogeneity"
        assert self.make_model(i2=66.7).heterogeneity_interpretation == "moderate heterogeneity"
        assert self.make_model(i2=75.0).heterogeneity_interpretation == "moderate heterogeneity"
        assert self.make_model(i2=90.0).heterogeneity_interpretation == "high heterogeneity"

    def test_degenerate_interpretation(self) -> None:
        """Test a single-study model is reported as not estimable."""
        model = self.make_model(degenerate=True, i2=0.0)
        assert "not estimable" in model.heterogeneity_interpretation

    def test_significance(self) -> None:
        """Test significance follows the confidence level."""
        assert self.make_model(p_value=0.01).significant is True
        assert self.make_model(p_value=0.2).significant is False

    def test_bounds_enforced(self) -> None:
        """Test I² above 100 and negative tau² are rejected."""
        with pytest.raises(ValidationError):
            self.make_model(i2=101.0)
        with pytest.raises(ValidationError):
            self.make_model(tau2=-0.01)


class TestInfluenceRecord:
    """Tests for InfluenceRecord model."""

    def test_coordinates(self) -> None:
        """Test the Baujat (x, y) pair."""
        record = InfluenceRecord(
            study_id="s1",
            label="Gao 2024",
            heterogeneity_contribution=1.5,
            leave_one_out_influence=0.7,
            leave_one_out_effect=0.3,
            leave_one_out_se=0.1,
            leave_one_out_tau2=0.0,
        )
        assert record.coordinates == (1.5, 0.7)
