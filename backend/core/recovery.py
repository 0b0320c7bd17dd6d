"""
recovery.py — Recovery windows and recovery resolution.

A recovery score can raise an official period/annual grade but never lower
it. It is only accepted inside its time-boxed window (optionally extended by
late-entry days); anything submitted outside is rejected with
WindowClosedError and the original grade stands.

Impact types (institution config):
- REPLACE_IF_HIGHER      final = max(base, capped recovery)
- ADJUST_TO_MINIMUM      a passing recovery lifts the grade to the passing score
- AVERAGE_WITH_ORIGINAL  mean of base and capped recovery
- QUALITATIVE_ONLY       recorded, grade unchanged
Every impact is floored at the base grade.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.areas import RecoveryRequirement, requires_recovery, rollup_areas
from core.errors import WindowClosedError
from core.grading_config import GradingConfig, RecoveryImpact
from core.models import RecoveryRecord, RecoveryTarget
from core.numeric import round_half_up

logger = logging.getLogger(__name__)


# target_id of the end-of-year window; period windows use the period id.
ANNUAL_WINDOW = "ANNUAL"


@dataclass(frozen=True)
class RecoveryWindow:
    """Recovery window for one period (target_id = period id) or the year."""
    target_id: str
    is_open: bool = True
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    allow_late_entry: bool = False
    late_entry_days: int = 0

    @property
    def effective_end(self) -> Optional[datetime]:
        if self.end is None:
            return None
        if self.allow_late_entry and self.late_entry_days > 0:
            return self.end + timedelta(days=self.late_entry_days)
        return self.end


@dataclass(frozen=True)
class RecoveryOutcome:
    base_grade: Decimal
    final_grade: Decimal
    applied: bool
    recovery_score: Optional[Decimal] = None
    capped_score: Optional[Decimal] = None
    impact: Optional[RecoveryImpact] = None


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO-8601 string (a trailing Z is accepted) or datetime -> aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _aware(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _aware(datetime.fromisoformat(text))


def recovery_window_from_dict(data: Dict[str, Any]) -> RecoveryWindow:
    def pick(*names, default=None):
        for n in names:
            if data.get(n) is not None:
                return data[n]
        return default

    target = pick("targetId", "target_id", "periodId", "period_id", default=ANNUAL_WINDOW)
    return RecoveryWindow(
        target_id=str(target),
        is_open=bool(pick("isOpen", "is_open", default=True)),
        start=parse_datetime(pick("startDate", "start_date", "start")),
        end=parse_datetime(pick("endDate", "end_date", "end")),
        allow_late_entry=bool(pick("allowLateEntry", "allow_late_entry", default=False)),
        late_entry_days=int(pick("lateEntryDays", "late_entry_days", default=0)),
    )


def window_for(record: RecoveryRecord, windows: Dict[str, RecoveryWindow]) -> Optional[RecoveryWindow]:
    """Pick the window governing a recovery record."""
    if record.target == RecoveryTarget.ANNUAL:
        return windows.get(ANNUAL_WINDOW)
    return windows.get(str(record.period_id))


# ── Windows ─────────────────────────────────────────────────────────

def window_status(window: Optional[RecoveryWindow], at: datetime) -> str:
    """Return open / closed / upcoming / not_configured for an instant."""
    if window is None:
        return "not_configured"
    if not window.is_open:
        return "closed"
    at = _aware(at)
    if window.start is not None and at < _aware(window.start):
        return "upcoming"
    end = window.effective_end
    if end is not None and at > _aware(end):
        return "closed"
    return "open"


def check_window(recovery: RecoveryRecord, window: Optional[RecoveryWindow]) -> None:
    status = window_status(window, recovery.submitted_at)
    if status == "open":
        return
    reasons = {
        "not_configured": "Recovery window is not configured",
        "closed": "Recovery window is closed",
        "upcoming": "Recovery window has not opened yet",
    }
    raise WindowClosedError(
        f"{reasons[status]} (submitted {recovery.submitted_at.isoformat()})", recovery.key
    )


# ── Resolution ──────────────────────────────────────────────────────

def _replace_if_higher(base: Decimal, capped: Decimal, config: GradingConfig) -> Decimal:
    return capped


def _adjust_to_minimum(base: Decimal, capped: Decimal, config: GradingConfig) -> Decimal:
    if capped >= config.min_passing_score:
        return min(config.min_passing_score, config.max_recovery_score)
    return capped


def _average_with_original(base: Decimal, capped: Decimal, config: GradingConfig) -> Decimal:
    return min((base + capped) / 2, config.max_recovery_score)


def _qualitative_only(base: Decimal, capped: Decimal, config: GradingConfig) -> Decimal:
    return base


IMPACT_RULES: Dict[RecoveryImpact, Callable[[Decimal, Decimal, GradingConfig], Decimal]] = {
    RecoveryImpact.REPLACE_IF_HIGHER: _replace_if_higher,
    RecoveryImpact.ADJUST_TO_MINIMUM: _adjust_to_minimum,
    RecoveryImpact.AVERAGE_WITH_ORIGINAL: _average_with_original,
    RecoveryImpact.QUALITATIVE_ONLY: _qualitative_only,
}


def resolve_with_recovery(
    base_grade: Decimal,
    recovery: Optional[RecoveryRecord],
    config: GradingConfig,
    window: Optional[RecoveryWindow] = None,
) -> RecoveryOutcome:
    """
    Apply a recovery score to a base grade.

    When `window` is given the recovery's submission instant is checked
    against it first. Without a recovery the base grade is returned as is.
    """
    if recovery is None:
        return RecoveryOutcome(base_grade=base_grade, final_grade=base_grade, applied=False)

    if window is not None:
        check_window(recovery, window)

    capped = min(recovery.score, config.max_recovery_score)

    if not config.include_recovery:
        return RecoveryOutcome(
            base_grade=base_grade,
            final_grade=base_grade,
            applied=False,
            recovery_score=recovery.score,
            capped_score=capped,
            impact=config.recovery_impact,
        )

    candidate = IMPACT_RULES[config.recovery_impact](base_grade, capped, config)
    final = round_half_up(max(base_grade, candidate), config.decimal_places)
    return RecoveryOutcome(
        base_grade=base_grade,
        final_grade=final,
        applied=final > base_grade,
        recovery_score=recovery.score,
        capped_score=capped,
        impact=config.recovery_impact,
    )


def submit_recovery(record: RecoveryRecord, window: Optional[RecoveryWindow], store) -> RecoveryRecord:
    """Validate a recovery against its window and persist it."""
    try:
        check_window(record, window)
    except WindowClosedError:
        logger.warning("Rejected late recovery %s", record.key)
        raise
    store.save_recovery(record)
    logger.info("Recovery accepted %s score=%s", record.key, record.score)
    return record


def _cell(grade: Any) -> Tuple[str, Optional[str], Optional[int]]:
    return (grade.enrollment_id, getattr(grade, "period_id", None), getattr(grade, "year", None))


def _area_requirements(grades: List[Any], config: GradingConfig) -> Dict[Tuple, RecoveryRequirement]:
    """(cell, subject_id) -> recovery requirement under the area rules, per period or year."""
    by_cell: Dict[Tuple, Dict[str, Decimal]] = {}
    for g in grades:
        by_cell.setdefault(_cell(g), {})[g.subject_id] = g.final_grade
    requirements = {}
    for cell, subject_grades in by_cell.items():
        for area in rollup_areas(subject_grades, config):
            for sid in area.failed_subjects:
                requirements[(cell, sid)] = requires_recovery(sid, area, config)
    return requirements


def find_recovery_candidates(grades: Iterable[Any], config: GradingConfig) -> List[Dict[str, Any]]:
    """
    List graded cells (period or annual grades) below the passing score.

    With subject areas configured, a failed subject is only a candidate when
    the area rules require its recovery (e.g. not when its area passes on
    the average).
    """
    graded = [g for g in grades if g.final_grade is not None]
    requirements = _area_requirements(graded, config) if config.areas else {}

    candidates = []
    for g in graded:
        if g.final_grade >= config.min_passing_score:
            continue
        requirement = requirements.get((_cell(g), g.subject_id))
        if requirement is not None and not requirement.required:
            logger.debug("No recovery for %s %s: %s", _cell(g), g.subject_id, requirement.reason)
            continue
        candidates.append({
            "enrollment_id": g.enrollment_id,
            "subject_id": g.subject_id,
            "period_id": getattr(g, "period_id", None),
            "year": getattr(g, "year", None),
            "grade": g.final_grade,
            "shortfall": config.min_passing_score - g.final_grade,
            "recovery_type": requirement.recovery_type.value if requirement else None,
        })
    candidates.sort(key=lambda c: (c["enrollment_id"], c["subject_id"], str(c["period_id"])))
    return candidates
