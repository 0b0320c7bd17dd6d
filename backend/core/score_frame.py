"""
score_frame.py — Tabular activity-score ingestion.

Turns loosely shaped score rows (API payloads, spreadsheet exports) into the
canonical frame consumed by aggregator.compute_period_grades_frame:

  enrollment_id | subject_id | period_id | activity_id | dimension | score

Handles:
- Column alias resolution (camelCase, snake_case, Spanish headers)
- Whitespace trimming on identifier columns
- Score -> numeric; unparseable or blank scores stay NaN (ungraded, never 0)
- Rejection of out-of-range scores, reported row by row
- Deduplication on (enrollment, activity): the last row wins
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from core.grading_config import GradingConfig


COLUMN_ALIASES: Dict[str, List[str]] = {
    "enrollment_id": ["enrollment_id", "enrollmentid", "student_enrollment_id", "studentenrollmentid", "matricula"],
    "subject_id": ["subject_id", "subjectid", "subject", "asignatura"],
    "period_id": ["period_id", "periodid", "academic_term_id", "academictermid", "term", "periodo"],
    "activity_id": ["activity_id", "activityid", "activity", "actividad"],
    "dimension": ["dimension", "component", "componente"],
    "score": ["score", "value", "grade", "nota"],
}

REQUIRED_COLUMNS = ["enrollment_id", "subject_id", "period_id", "activity_id", "score"]


def _find_column(df: pd.DataFrame, aliases: List[str]) -> Optional[str]:
    cols_lower = {str(c).lower().strip(): c for c in df.columns}
    for a in aliases:
        if a in cols_lower:
            return cols_lower[a]
    return None


def resolve_columns(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    """Map canonical column names to the frame's actual column names."""
    return {canon: _find_column(df, aliases) for canon, aliases in COLUMN_ALIASES.items()}


def normalize_scores(
    df: pd.DataFrame,
    config: Optional[GradingConfig] = None,
) -> Tuple[pd.DataFrame, Dict]:
    """
    Normalize a score frame and return (canonical_df, ingest_report).

    Raises ValueError if a required column cannot be found.
    """
    report: Dict = {
        "original_rows": len(df),
        "steps": [],
        "warnings": [],
        "rejected": [],
    }

    mapping = resolve_columns(df)
    missing = [c for c in REQUIRED_COLUMNS if mapping.get(c) is None]
    if missing:
        raise ValueError(f"Missing required column(s): {', '.join(missing)}")

    out = pd.DataFrame({canon: df[col] for canon, col in mapping.items() if col is not None})
    if "dimension" not in out.columns:
        out["dimension"] = "GENERAL"
        report["warnings"].append("No dimension column; all activities grouped under GENERAL.")

    # ── 1. Identifiers ──────────────────────────────────────────────
    for col in ["enrollment_id", "subject_id", "period_id", "activity_id", "dimension"]:
        out[col] = out[col].astype(str).str.strip()
    blank_ids = out[["enrollment_id", "subject_id", "period_id", "activity_id"]].isin(["", "nan", "None"]).any(axis=1)
    if blank_ids.any():
        report["warnings"].append(f"Dropped {int(blank_ids.sum())} rows with blank identifiers.")
        out = out[~blank_ids]
    report["steps"].append("Trimmed identifier columns.")

    # ── 2. Scores to numeric ────────────────────────────────────────
    original_na = int(out["score"].isna().sum())
    out["score"] = pd.to_numeric(out["score"], errors="coerce")
    parse_errors = int(out["score"].isna().sum()) - original_na
    if parse_errors > 0:
        report["warnings"].append(
            f"{parse_errors} score values could not be converted to numbers; treated as ungraded."
        )
    ungraded = int(out["score"].isna().sum())
    if ungraded:
        report["steps"].append(f"Kept {ungraded} ungraded scores (excluded from averages, not zero).")

    # ── 3. Range check ──────────────────────────────────────────────
    if config is not None:
        low = float(config.min_possible)
        high = float(config.max_possible)
        bad = out["score"].notna() & ((out["score"] < low) | (out["score"] > high))
        for r in out[bad].itertuples(index=False):
            report["rejected"].append({
                "enrollment_id": r.enrollment_id,
                "activity_id": r.activity_id,
                "score": float(r.score),
                "reason": f"outside [{low}, {high}]",
            })
        out = out[~bad]

    # ── 4. Deduplicate ──────────────────────────────────────────────
    before = len(out)
    out = out.drop_duplicates(subset=["enrollment_id", "activity_id"], keep="last")
    if len(out) < before:
        report["warnings"].append(f"Removed {before - len(out)} duplicate (enrollment, activity) rows.")

    out = out.replace({np.inf: np.nan, -np.inf: np.nan}).reset_index(drop=True)
    report["final_rows"] = len(out)
    return out[["enrollment_id", "subject_id", "period_id", "activity_id", "dimension", "score"]], report
