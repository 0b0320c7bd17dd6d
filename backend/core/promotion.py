"""
promotion.py — End-of-year promotion decision.

Rules, evaluated on the enrollment's annual subject grades:
- maxFailedAreas: failed units above the configured maximum. A unit is a
  subject (annual grade < minPassingScore) unless the institution groups
  subjects into areas; then it is an area, see core/areas.py
- minAttendance:  (present + late) / total school days x 100 below minimum,
  compared unrounded; the stored percentage is rounded for display

Any triggered rule -> NOT_PROMOTED. When the institution configures
conditionalMaxFailedAreas, attendance is fine and the failed count lands in
(maxFailedAreas, conditionalMaxFailedAreas], the decision is CONDITIONAL.
Otherwise PROMOTED.

Subjects without an annual grade are reported as ungraded; they never count
as failed.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from core.areas import rollup_areas
from core.grading_config import GradingConfig
from core.models import (
    AnnualSubjectGrade,
    AttendanceSummary,
    Enrollment,
    PromotionDecision,
    PromotionResult,
    Subject,
)
from core.numeric import round_half_up

logger = logging.getLogger(__name__)


RULE_MAX_FAILED_AREAS = "maxFailedAreas"
RULE_MIN_ATTENDANCE = "minAttendance"


def attendance_share(attendance: Optional[AttendanceSummary]) -> Optional[Decimal]:
    """Unrounded attended share of school days x 100; None when no days were recorded."""
    if attendance is None or attendance.total_days <= 0:
        return None
    attended = Decimal(attendance.present + attendance.late)
    return attended / Decimal(attendance.total_days) * 100


def attendance_percentage(attendance: Optional[AttendanceSummary], places: int = 2) -> Optional[Decimal]:
    """attendance_share rounded half-up for display."""
    share = attendance_share(attendance)
    return None if share is None else round_half_up(share, places)


def decide(
    enrollment: Enrollment,
    year: int,
    annual_grades: Iterable[AnnualSubjectGrade],
    attendance: Optional[AttendanceSummary],
    config: GradingConfig,
    subjects: Optional[Iterable[Subject]] = None,
) -> PromotionResult:
    """
    Decide promotion for one enrollment.

    `subjects` is the group's subject list; subjects in it without an annual
    grade are listed as ungraded.
    """
    subjects = list(subjects or [])
    grades: Dict[str, AnnualSubjectGrade] = {
        g.subject_id: g for g in annual_grades if g.final_grade is not None
    }
    failed = sorted(sid for sid, g in grades.items() if g.final_grade < config.min_passing_score)
    ungraded: List[str] = sorted(s.id for s in subjects if s.id not in grades)

    failed_areas: List[str] = []
    if config.areas:
        areas = rollup_areas(
            {sid: g.final_grade for sid, g in grades.items()}, config, [s.id for s in subjects]
        )
        failed_areas = [a.area_id for a in areas if a.failed]
        failed_units, unit = failed_areas, "areas"
    else:
        failed_units, unit = failed, "subjects"

    share = attendance_share(attendance)
    pct = None if share is None else round_half_up(share, config.decimal_places)

    triggered: List[str] = []
    reasons: List[str] = []

    # ── Rule 1: failed areas ────────────────────────────────────────
    if len(failed_units) > config.max_failed_areas:
        triggered.append(RULE_MAX_FAILED_AREAS)
        reasons.append(
            f"{len(failed_units)} failed {unit} exceed the maximum of {config.max_failed_areas}"
        )

    # ── Rule 2: attendance ──────────────────────────────────────────
    if share is not None and share < config.min_attendance:
        triggered.append(RULE_MIN_ATTENDANCE)
        shown = round_half_up(share, max(config.decimal_places, 2))
        reasons.append(f"Attendance {shown}% is below the minimum of {config.min_attendance}%")
    elif share is None:
        reasons.append("No attendance recorded; attendance rule not applied")

    # ── Decision ────────────────────────────────────────────────────
    conditional_cap = config.conditional_max_failed_areas
    if triggered == [RULE_MAX_FAILED_AREAS] and conditional_cap is not None and len(failed_units) <= conditional_cap:
        decision = PromotionDecision.CONDITIONAL
        reasons.append(f"Within the conditional allowance of {conditional_cap} failed {unit}")
    elif triggered:
        decision = PromotionDecision.NOT_PROMOTED
    else:
        decision = PromotionDecision.PROMOTED

    if ungraded:
        reasons.append(f"{len(ungraded)} subject(s) without an annual grade")

    result = PromotionResult(
        enrollment_id=enrollment.id,
        year=year,
        decision=decision,
        failed_subject_count=len(failed),
        attendance_pct=pct,
        triggering_rules=triggered,
        failed_subjects=failed,
        ungraded_subjects=ungraded,
        reasons=reasons,
        failed_areas=failed_areas,
    )
    logger.debug("Promotion %s/%s: %s %s", enrollment.id, year, decision.value, triggered)
    return result
