"""Random-effects meta-analysis of heterogeneous effect measures."""

from .core.errors import (  # noqa: F401
    DegenerateModel,
    HarmonizationError,
    InsufficientSampleSize,
    InsufficientStudies,
    MetaAnalysisError,
    MissingField,
    NonConvergence,
    UnsupportedMeasure,
)
from .core.models import (  # noqa: F401
    HarmonizedEffect,
    InfluenceRecord,
    MeasureKind,
    MetaAnalysisResult,
    PooledModel,
    StudyRecord,
)
from .meta import MetaAnalyzer, RandomEffectsFitter, fit_tau2, harmonize  # noqa: F401

__version__ = "0.1.0"
