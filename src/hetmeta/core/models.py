"""Core domain models for studies, harmonized effects and fitted models.

Every model produced by the engine is frozen: each stage of the
pipeline builds a new generation of records from the previous one and
nothing is mutated after creation.  ``StudyRecord`` is the input side
and stays permissive about missing values so that the harmonizer can
report exactly which fields a study lacks.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from scipy import stats


class MeasureKind(str, Enum):
    """Raw effect measures the harmonizer understands."""

    SMD = "SMD"
    OR = "OR"


SMD_FIELDS = ("m1", "m2", "sd1", "sd2", "n1", "n2")
OR_FIELDS = ("a", "b", "c", "d")


class StudyRecord(BaseModel):
    """One retrieved study with its raw effect inputs."""

    study_id: str
    label: Optional[str] = None
    year: Optional[int] = None
    outcome: Optional[str] = None
    measure: str

    # Continuous outcome (standardized mean difference)
    m1: Optional[float] = None
    m2: Optional[float] = None
    sd1: Optional[float] = Field(None, gt=0)
    sd2: Optional[float] = Field(None, gt=0)
    n1: Optional[int] = Field(None, gt=0)
    n2: Optional[int] = Field(None, gt=0)
    n: Optional[int] = Field(None, gt=0, description="Total sample size when group sizes are unknown")

    # 2x2 table (odds ratio)
    a: Optional[int] = Field(None, ge=0, description="Exposed with outcome")
    b: Optional[int] = Field(None, ge=0, description="Exposed without outcome")
    c: Optional[int] = Field(None, ge=0, description="Unexposed with outcome")
    d: Optional[int] = Field(None, ge=0, description="Unexposed without outcome")

    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("measure", mode="before")
    @classmethod
    def _normalize_measure(cls, v: Any) -> str:
        if isinstance(v, MeasureKind):
            return v.value
        return str(v).strip().upper()

    @field_validator("m1", "m2", "sd1", "sd2", "n1", "n2", "n", "a", "b", "c", "d", mode="before")
    @classmethod
    def _nan_is_missing(cls, v: Any) -> Any:
        """Treat NaN (an empty spreadsheet cell) as an absent value."""
        if isinstance(v, float) and math.isnan(v):
            return None
        return v

    @property
    def display_label(self) -> str:
        return self.label or self.study_id


class HarmonizedEffect(BaseModel):
    """Bias-corrected standardized effect (Hedges' g) for one study."""

    model_config = ConfigDict(frozen=True)

    study_id: str
    label: str
    measure: MeasureKind
    effect: float
    variance: float = Field(..., gt=0)
    n: float = Field(..., gt=2)
    raw_effect: float = Field(..., description="Cohen's d before small-sample correction")
    correction: float = Field(..., description="Hedges' J")
    group_sizes_estimated: bool = False

    @property
    def se(self) -> float:
        return math.sqrt(self.variance)

    def confidence_interval(self, level: float = 0.95) -> Tuple[float, float]:
        """Normal-theory interval for the study's own effect."""
        half = float(stats.norm.ppf(1 - (1 - level) / 2)) * self.se
        return self.effect - half, self.effect + half

    @property
    def ci_low(self) -> float:
        return self.confidence_interval()[0]

    @property
    def ci_high(self) -> float:
        return self.confidence_interval()[1]


class HarmonizationFailure(BaseModel):
    """A study that was dropped because it could not be harmonized."""

    model_config = ConfigDict(frozen=True)

    study_id: Optional[str] = None
    label: Optional[str] = None
    error: str
    message: str


class FixedEffectSummary(BaseModel):
    """Inverse-variance fixed-effect aggregation and Cochran's Q."""

    model_config = ConfigDict(frozen=True)

    k: int = Field(..., ge=1)
    weights: Tuple[float, ...]
    pooled_effect: float
    standard_error: float
    q: float = Field(..., ge=0)
    df: int = Field(..., ge=0)
    q_pvalue: Optional[float] = None
    contributions: Tuple[float, ...]


class PooledModel(BaseModel):
    """Random-effects model fitted by REML with Knapp-Hartung inference."""

    model_config = ConfigDict(frozen=True)

    k: int = Field(..., ge=1)
    tau2: float = Field(..., ge=0)
    tau: float = Field(..., ge=0)
    pooled_effect: float
    standard_error: float
    standard_error_unadjusted: float
    ci_low: float
    ci_high: float
    test_statistic: float
    test_df: int
    p_value: float
    q: float = Field(..., ge=0)
    df: int = Field(..., ge=0)
    q_pvalue: Optional[float] = None
    i2: float = Field(..., ge=0, le=100)
    prediction_interval_low: Optional[float] = None
    prediction_interval_high: Optional[float] = None
    weights: Tuple[float, ...] = Field(..., description="Random-effects weights in percent")
    level: float = 0.95
    iterations: int = 0
    converged: bool = True
    degenerate: bool = False

    @property
    def significant(self) -> bool:
        return self.p_value < 1 - self.level

    @property
    def heterogeneity_interpretation(self) -> str:
        if self.degenerate:
            return "not estimable (single study)"
        if self.i2 > 75:
            return "high heterogeneity"
        elif self.i2 > 50:
            return "moderate heterogeneity"
        return "low heterogeneity"


class InfluenceRecord(BaseModel):
    """Baujat coordinates for one study."""

    model_config = ConfigDict(frozen=True)

    study_id: str
    label: str
    heterogeneity_contribution: float = Field(..., ge=0)
    leave_one_out_influence: float = Field(..., ge=0)
    leave_one_out_effect: float
    leave_one_out_se: float
    leave_one_out_tau2: float = Field(..., ge=0)

    @property
    def coordinates(self) -> Tuple[float, float]:
        return self.heterogeneity_contribution, self.leave_one_out_influence


class MetaAnalysisResult(BaseModel):
    """Everything one analysis run hands to downstream renderers."""

    model_config = ConfigDict(frozen=True)

    effects: List[HarmonizedEffect]
    fixed: FixedEffectSummary
    model: PooledModel
    influence: Optional[List[InfluenceRecord]] = None
    influence_note: Optional[str] = None
    failures: List[HarmonizationFailure] = Field(default_factory=list)

    @property
    def total_participants(self) -> float:
        return sum(es.n for es in self.effects)
