"""Meta‑analysis utilities.

This package contains the estimation engine: harmonization of raw
study measures to Hedges' g, fixed-effect aggregation, REML
random-effects fitting with Knapp–Hartung inference and Baujat
influence diagnostics.
"""

from .analyzer import MetaAnalyzer  # noqa: F401
from .fixed_effect import aggregate  # noqa: F401
from .harmonizer import harmonize, harmonize_all  # noqa: F401
from .influence import InfluenceAnalyzer, leave_one_out, outliers  # noqa: F401
from .random_effects import RandomEffectsFitter  # noqa: F401
from .reml import estimate_tau2, fit_tau2  # noqa: F401
