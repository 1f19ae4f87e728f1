"""Load study records from an extraction spreadsheet (CSV)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pandas as pd  # type: ignore

from ..core.models import OR_FIELDS, SMD_FIELDS, StudyRecord
from ..utils.logging import get_logger

logger = get_logger(__name__)

NUMERIC_COLUMNS = SMD_FIELDS + ("n",) + OR_FIELDS

COLUMN_ALIASES = {
    "author": "authors",
    "study": "authors",
    "year": "publication_year",
    "measure_type": "measure",
    "es_type": "measure",
    "id": "study_id",
}


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if hasattr(value, "item"):
        # numpy scalar -> python scalar
        return value.item()
    return value


def row_to_study(row: Dict[str, Any], index: int) -> StudyRecord:
    """Build a :class:`StudyRecord` from one spreadsheet row."""
    authors = _clean(row.get("authors"))
    year = _clean(row.get("publication_year"))
    label_parts = [str(authors)] if authors else []
    if year is not None:
        year = int(year)
        label_parts.append(str(year))
    study_id = _clean(row.get("study_id"))
    known = {"authors", "publication_year", "study_id", "measure", "outcome", *NUMERIC_COLUMNS}
    return StudyRecord(
        study_id=str(study_id) if study_id is not None else f"study_{index + 1}",
        label=" ".join(label_parts) or None,
        year=year,
        outcome=_clean(row.get("outcome")),
        measure=_clean(row.get("measure")) or "",
        extra={k: _clean(v) for k, v in row.items() if k not in known},
        **{name: _clean(row.get(name)) for name in NUMERIC_COLUMNS},
    )


def load_studies(path: Path) -> List[StudyRecord]:
    """Read a CSV of studies, one row per study, preserving file order.

    Column names are matched case-insensitively; a few common aliases
    (``author``, ``year``, ``id``) are accepted.
    """
    df = pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    df = df.rename(columns={k: v for k, v in COLUMN_ALIASES.items() if v not in df.columns})
    if "measure" not in df.columns:
        raise ValueError(f"{path}: missing required column 'measure'")
    studies = [row_to_study(row, i) for i, row in enumerate(df.to_dict(orient="records"))]
    logger.info(f"Loaded {len(studies)} studies from {path}")
    return studies
