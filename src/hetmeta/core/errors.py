"""Error taxonomy for harmonization and model fitting.

Harmonization errors are raised per study and always carry the
offending study's identity so the caller can decide whether to drop
the study or abort the run.  Model errors abort the analysis and carry
whatever partial state was reached (for example the last tau² iterate).
"""

from __future__ import annotations

from typing import Optional, Sequence


class MetaAnalysisError(Exception):
    """Base class for all errors raised by the estimation engine."""

    code = "meta_analysis_error"


class HarmonizationError(MetaAnalysisError):
    """A single study could not be converted to Hedges' g."""

    code = "harmonization_error"

    def __init__(self, message: str, study_id: Optional[str] = None, label: Optional[str] = None) -> None:
        self.study_id = study_id
        self.label = label
        who = label or study_id
        super().__init__(f"{message} (study: {who})" if who else message)


class UnsupportedMeasure(HarmonizationError):
    """The declared measure is neither SMD nor OR."""

    code = "unsupported_measure"

    def __init__(self, measure: str, study_id: Optional[str] = None, label: Optional[str] = None) -> None:
        self.measure = measure
        super().__init__(f"Unsupported measure type: {measure!r}", study_id, label)


class MissingField(HarmonizationError):
    """Required raw fields for the declared measure are absent or non-finite."""

    code = "missing_field"

    def __init__(self, fields: Sequence[str], study_id: Optional[str] = None, label: Optional[str] = None) -> None:
        self.fields = list(fields)
        super().__init__(f"Missing or non-finite fields: {', '.join(self.fields)}", study_id, label)


class InsufficientSampleSize(HarmonizationError):
    """Total sample size must exceed 2 for the Hedges correction."""

    code = "insufficient_sample_size"

    def __init__(self, n_total: float, study_id: Optional[str] = None, label: Optional[str] = None) -> None:
        self.n_total = n_total
        super().__init__(
            f"Total sample size must be greater than 2 for Hedges' g correction, got {n_total:g}",
            study_id,
            label,
        )


class DegenerateModel(MetaAnalysisError):
    """No harmonized effects are available to fit."""

    code = "degenerate_model"


class NonConvergence(MetaAnalysisError):
    """REML iteration reached its cap without meeting the tolerance."""

    code = "non_convergence"

    def __init__(self, last_tau2: float, iterations: int, last_step: float) -> None:
        self.last_tau2 = last_tau2
        self.iterations = iterations
        self.last_step = last_step
        super().__init__(
            f"REML did not converge after {iterations} iterations "
            f"(last tau2={last_tau2:.6g}, last step={last_step:.3g})"
        )


class InsufficientStudies(MetaAnalysisError):
    """Influence diagnostics need at least three studies."""

    code = "insufficient_studies"

    def __init__(self, k: int, required: int = 3) -> None:
        self.k = k
        self.required = required
        super().__init__(f"Influence diagnostics need at least {required} studies, got {k}")
