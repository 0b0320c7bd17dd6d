"""
aggregator.py — Bottom-up score aggregation.

  activity scores -> dimension means -> period subject grade -> annual subject grade

Period strategies:
- WEIGHTED_DIMENSIONS: mean per dimension, combined with the institution's
  dimension weights renormalized over the dimensions that actually have
  scored activities.
- SUM_ACTIVITIES: plain mean of every scored activity, dimensions ignored.

Annual strategies:
- WEIGHTED_PERIODS: period weights (by period order) renormalized over the
  periods that have a grade.
- SIMPLE_AVERAGE: unweighted mean of the period grades.

Ungraded (None) scores are excluded everywhere; they are never zero.
Rounding is round-half-up to the configured precision, applied once at the
output of each level. All functions are pure.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from core.classifier import classify_level
from core.errors import ConfigInvariantViolation, EngineError, InsufficientData, OutOfRangeError
from core.grading_config import AnnualCalculationMode, GradingConfig, PeriodCalculationMode
from core.models import ScoreEntry
from core.numeric import as_float, round_half_up, to_decimal


@dataclass(frozen=True)
class PeriodGradeResult:
    grade: Decimal
    dimension_means: Dict[str, Decimal] = field(default_factory=dict)
    weights_used: Dict[str, Decimal] = field(default_factory=dict)
    scored_activities: int = 0


@dataclass(frozen=True)
class PeriodGradeInput:
    period_id: str
    order: int
    grade: Optional[Decimal]


@dataclass(frozen=True)
class AnnualGradeResult:
    grade: Decimal
    periods_used: Tuple[str, ...] = ()
    weights_used: Dict[str, Decimal] = field(default_factory=dict)


# ── Helpers ─────────────────────────────────────────────────────────

def _mean(values: Sequence[Decimal]) -> Decimal:
    return sum(values, Decimal(0)) / Decimal(len(values))


def _weighted_mean(pairs: Sequence[Tuple[Decimal, Decimal]]) -> Decimal:
    total_weight = sum((w for _, w in pairs), Decimal(0))
    return sum((v * w for v, w in pairs), Decimal(0)) / total_weight


def _check_range(entries: Sequence[ScoreEntry], config: GradingConfig, key: Dict[str, Any]) -> None:
    low, high = config.min_possible, config.max_possible
    for e in entries:
        if e.score < low or e.score > high:
            raise OutOfRangeError(
                f"Activity score {e.score} outside [{low}, {high}]",
                {**key, "activity_id": e.activity_id},
            )


# ── Period strategies ───────────────────────────────────────────────

def _weighted_dimensions(entries, config, key):
    by_dimension: "OrderedDict[str, List[Decimal]]" = OrderedDict()
    for e in entries:
        by_dimension.setdefault(e.dimension, []).append(e.score)

    pairs = []
    means = {}
    weights = {}
    for dimension, scores in by_dimension.items():
        weight = config.dimension_weights.get(dimension)
        if weight is None:
            raise ConfigInvariantViolation(
                f"Dimension '{dimension}' has scored activities but no configured weight",
                {**key, "institution_id": config.institution_id},
            )
        mean = _mean(scores)
        means[dimension] = mean
        weights[dimension] = weight
        pairs.append((mean, weight))

    total_weight = sum(weights.values(), Decimal(0))
    if total_weight == 0:
        raise InsufficientData("Only zero-weight dimensions have scores", key)
    return _weighted_mean(pairs), means, weights


def _sum_activities(entries, config, key):
    return _mean([e.score for e in entries]), {}, {}


PERIOD_STRATEGIES: Dict[PeriodCalculationMode, Callable] = {
    PeriodCalculationMode.WEIGHTED_DIMENSIONS: _weighted_dimensions,
    PeriodCalculationMode.SUM_ACTIVITIES: _sum_activities,
}


def compute_period_subject_grade(
    scores: Iterable[ScoreEntry],
    config: GradingConfig,
    key: Optional[Dict[str, Any]] = None,
) -> PeriodGradeResult:
    """
    Compute one (enrollment, subject, period) grade from its activity scores.

    Raises InsufficientData when no activity has a score.
    """
    key = dict(key or {})
    scored = [e for e in scores if e.score is not None]
    if not scored:
        raise InsufficientData("No scored activities for this period", key)
    _check_range(scored, config, key)

    strategy = PERIOD_STRATEGIES[config.period_calculation_mode]
    raw, means, weights = strategy(scored, config, key)

    places = config.decimal_places
    return PeriodGradeResult(
        grade=round_half_up(raw, places),
        dimension_means={d: round_half_up(m, places) for d, m in means.items()},
        weights_used=weights,
        scored_activities=len(scored),
    )


# ── Annual strategies ───────────────────────────────────────────────

def _weighted_periods(graded, config, key):
    pairs = []
    weights = {}
    for p in graded:
        weight = config.period_weight(p.order)
        if weight is None:
            raise ConfigInvariantViolation(
                f"No weight configured for period #{p.order}",
                {**key, "period_id": p.period_id, "institution_id": config.institution_id},
            )
        weights[p.period_id] = weight
        pairs.append((p.grade, weight))
    if sum(weights.values(), Decimal(0)) == 0:
        raise InsufficientData("Only zero-weight periods have grades", key)
    return _weighted_mean(pairs), weights


def _simple_average(graded, config, key):
    return _mean([p.grade for p in graded]), {}


ANNUAL_STRATEGIES: Dict[AnnualCalculationMode, Callable] = {
    AnnualCalculationMode.WEIGHTED_PERIODS: _weighted_periods,
    AnnualCalculationMode.SIMPLE_AVERAGE: _simple_average,
}


def compute_annual_subject_grade(
    period_grades: Iterable[PeriodGradeInput],
    config: GradingConfig,
    key: Optional[Dict[str, Any]] = None,
) -> AnnualGradeResult:
    """Combine period grades into the annual subject grade."""
    key = dict(key or {})
    graded = sorted(
        (p for p in period_grades if p.grade is not None),
        key=lambda p: (p.order, p.period_id),
    )
    if not graded:
        raise InsufficientData("No graded periods for this subject", key)

    strategy = ANNUAL_STRATEGIES[config.annual_calculation_mode]
    raw, weights = strategy(graded, config, key)
    return AnnualGradeResult(
        grade=round_half_up(raw, config.decimal_places),
        periods_used=tuple(p.period_id for p in graded),
        weights_used=weights,
    )


# ── Tabular batch ───────────────────────────────────────────────────

CELL_COLUMNS = ["enrollment_id", "subject_id", "period_id"]


def compute_period_grades_frame(df: pd.DataFrame, config: GradingConfig) -> pd.DataFrame:
    """
    Compute every (enrollment, subject, period) cell in a normalized score frame.

    Expects the columns produced by score_frame.normalize_scores. One output
    row per cell with status graded / not_graded / error.
    """
    out_cols = CELL_COLUMNS + ["grade", "level", "scored_activities", "status", "error"]
    if df.empty:
        return pd.DataFrame(columns=out_cols)

    rows = []
    for (enrollment_id, subject_id, period_id), cell in df.groupby(CELL_COLUMNS, sort=True):
        key = {"enrollment_id": enrollment_id, "subject_id": subject_id, "period_id": period_id}
        entries = [
            ScoreEntry(str(r.activity_id), str(r.dimension), to_decimal(r.score))
            for r in cell.itertuples(index=False)
        ]
        row = {**key, "grade": None, "level": None, "scored_activities": 0, "status": "graded", "error": None}
        try:
            result = compute_period_subject_grade(entries, config, key)
            row["grade"] = as_float(result.grade)
            row["scored_activities"] = result.scored_activities
            row["level"] = classify_level(result.grade, config.scale, key)
        except InsufficientData:
            row["status"] = "not_graded"
        except EngineError as exc:
            row["status"] = "error"
            row["error"] = exc.code
        rows.append(row)

    return pd.DataFrame(rows, columns=out_cols)
