"""Convert raw study measures into a common bias-corrected metric.

Standardized mean differences are computed from group means and
standard deviations; odds ratios from 2x2 tables are mapped onto the
Cohen's d scale with Chinn's logistic transform.  Both paths finish
with the Hedges small-sample correction so every study ends up as
Hedges' g with its sampling variance.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Tuple

from ..config.settings import settings
from ..core.errors import (
    HarmonizationError,
    InsufficientSampleSize,
    MissingField,
    UnsupportedMeasure,
)
from ..core.models import (
    OR_FIELDS,
    HarmonizationFailure,
    HarmonizedEffect,
    MeasureKind,
    StudyRecord,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)

LOGISTIC_SCALE = math.sqrt(3) / math.pi


def cohens_d(m1: float, m2: float, sd1: float, sd2: float, n1: float, n2: float) -> Tuple[float, float]:
    """Cohen's d using the pooled standard deviation, and its variance."""
    pooled_sd = math.sqrt(((n1 - 1) * sd1 ** 2 + (n2 - 1) * sd2 ** 2) / (n1 + n2 - 2))
    d = (m1 - m2) / pooled_sd
    var_d = (n1 + n2) / (n1 * n2) + d ** 2 / (2 * (n1 + n2))
    return d, var_d


def log_odds_ratio(a: float, b: float, c: float, d: float, continuity: float = 0.5) -> Tuple[float, float]:
    """Log odds ratio of a 2x2 table and its Woolf variance.

    When any cell is zero, ``continuity`` is added to all four cells.
    """
    if min(a, b, c, d) == 0:
        a, b, c, d = (x + continuity for x in (a, b, c, d))
    if min(a, b, c, d) <= 0:
        raise ValueError("2x2 table has an empty cell and no continuity correction")
    return math.log((a * d) / (b * c)), 1 / a + 1 / b + 1 / c + 1 / d


def chinn_transform(log_or: float, var_log_or: float) -> Tuple[float, float]:
    """Map a log odds ratio onto the Cohen's d scale (Chinn, 2000)."""
    return log_or * LOGISTIC_SCALE, var_log_or * LOGISTIC_SCALE ** 2


def hedges_correction(n_total: float) -> float:
    """Small-sample correction factor J = 1 - 3 / (4(N - 2) - 1)."""
    if n_total <= 2:
        raise InsufficientSampleSize(n_total)
    return 1 - 3 / (4 * (n_total - 2) - 1)


def _missing(study: StudyRecord, fields: Iterable[str]) -> List[str]:
    missing = []
    for name in fields:
        value = getattr(study, name)
        if value is None or not math.isfinite(value):
            missing.append(name)
    return missing


def _smd_inputs(study: StudyRecord) -> Tuple[float, float, bool]:
    """Group sizes for the SMD path, splitting a bare total evenly."""
    if study.n1 is not None and study.n2 is not None:
        return float(study.n1), float(study.n2), False
    if study.n1 is None and study.n2 is None and study.n is not None:
        return study.n / 2, study.n / 2, True
    return math.nan, math.nan, False


def harmonize(study: StudyRecord, continuity: Optional[float] = None) -> HarmonizedEffect:
    """Convert one study to Hedges' g.

    Raises:
        UnsupportedMeasure: the measure is neither SMD nor OR.
        MissingField: required inputs are absent or non-finite.
        InsufficientSampleSize: total sample size is 2 or less.
    """
    ident = {"study_id": study.study_id, "label": study.display_label}
    try:
        measure = MeasureKind(study.measure)
    except ValueError:
        raise UnsupportedMeasure(study.measure, **ident) from None

    estimated = False
    if measure is MeasureKind.SMD:
        missing = _missing(study, ("m1", "m2", "sd1", "sd2"))
        n1, n2, estimated = _smd_inputs(study)
        if math.isnan(n1):
            missing.extend(name for name in ("n1", "n2") if getattr(study, name) is None)
        if missing:
            raise MissingField(missing, **ident)
        n_total = n1 + n2
        if n_total <= 2:
            raise InsufficientSampleSize(n_total, **ident)
        d, var_d = cohens_d(study.m1, study.m2, study.sd1, study.sd2, n1, n2)
    else:
        missing = _missing(study, OR_FIELDS)
        if missing:
            raise MissingField(missing, **ident)
        n_total = float(study.a + study.b + study.c + study.d)
        if n_total <= 2:
            raise InsufficientSampleSize(n_total, **ident)
        cc = settings.continuity_correction if continuity is None else continuity
        try:
            log_or, var_log_or = log_odds_ratio(study.a, study.b, study.c, study.d, continuity=cc)
        except ValueError as exc:
            raise MissingField(list(OR_FIELDS), **ident) from exc
        d, var_d = chinn_transform(log_or, var_log_or)

    j = hedges_correction(n_total)
    effect = HarmonizedEffect(
        study_id=study.study_id,
        label=study.display_label,
        measure=measure,
        effect=j * d,
        variance=j ** 2 * var_d,
        n=n_total,
        raw_effect=d,
        correction=j,
        group_sizes_estimated=estimated,
    )
    logger.debug(
        "Harmonized %s (%s): d=%.4f J=%.4f g=%.4f var=%.5f",
        effect.label,
        measure.value,
        d,
        j,
        effect.effect,
        effect.variance,
    )
    return effect


def harmonize_all(
    studies: Iterable[StudyRecord],
    skip_failures: bool = False,
    continuity: Optional[float] = None,
) -> Tuple[List[HarmonizedEffect], List[HarmonizationFailure]]:
    """Harmonize studies in order.

    With ``skip_failures`` a study that fails is recorded as a
    :class:`HarmonizationFailure` and the batch continues; otherwise the
    first error propagates to the caller.
    """
    effects: List[HarmonizedEffect] = []
    failures: List[HarmonizationFailure] = []
    for study in studies:
        try:
            effects.append(harmonize(study, continuity=continuity))
        except HarmonizationError as exc:
            if not skip_failures:
                raise
            logger.warning(f"Skipping study {study.display_label}: {exc}")
            failures.append(
                HarmonizationFailure(
                    study_id=exc.study_id,
                    label=exc.label,
                    error=exc.code,
                    message=str(exc),
                )
            )
    logger.info(f"Harmonized {len(effects)} studies ({len(failures)} skipped)")
    return effects, failures
