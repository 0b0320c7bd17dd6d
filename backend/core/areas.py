"""
areas.py — Subject areas: area grade, area approval, recovery need and alerts.

When an institution groups subjects into areas, the area (not the subject)
is the unit the promotion rule counts. Per area:

  calculation_type   AVERAGE   plain mean of the graded subjects
                     WEIGHTED  mean weighted by each subject's area weight
                     DOMINANT  the dominant subject's grade (mean when the
                               dominant subject has no grade)
  approval_rule      AREA_AVERAGE      area grade >= minPassingScore
                     ALL_SUBJECTS      every graded subject passes
                     DOMINANT_SUBJECT  the dominant subject passes (falls
                                       back to the area grade without one)

fail_if_any_subject_fails fails the area on any failed subject whatever the
rule says. A subject that belongs to no area stands alone as its own area.
Ungraded subjects are left out of the area, and an area without any graded
subject is ungraded: it neither passes nor fails.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from core.grading_config import (
    Area,
    AreaApprovalRule,
    AreaCalculationType,
    AreaRecoveryRule,
    AreaSubject,
    GradingConfig,
)
from core.numeric import round_half_up

logger = logging.getLogger(__name__)


ALERT_AREA_NOT_APPROVED = "AREA_NOT_APPROVED"
ALERT_SUBJECT_NOT_APPROVED = "SUBJECT_NOT_APPROVED"


@dataclass
class AreaResult:
    area_id: str
    name: str
    grade: Optional[Decimal]
    approved: Optional[bool]
    subject_grades: Dict[str, Decimal] = field(default_factory=dict)
    failed_subjects: List[str] = field(default_factory=list)
    ungraded_subjects: List[str] = field(default_factory=list)
    dominant_subject_id: Optional[str] = None
    dominant_subject_applied: bool = False
    standalone: bool = False

    @property
    def failed(self) -> bool:
        return self.approved is False


@dataclass(frozen=True)
class RecoveryRequirement:
    required: bool
    reason: str
    recovery_type: AreaRecoveryRule = AreaRecoveryRule.NONE


@dataclass(frozen=True)
class Alert:
    type: str
    code: str
    message: str
    entity: str
    entity_id: str


# ── Grade and approval ──────────────────────────────────────────────

def area_grade(area: Area, grades: Mapping[str, Decimal], config: GradingConfig) -> Tuple[Optional[Decimal], bool]:
    """(area grade, whether the dominant subject's grade was used); grade None when nothing is graded."""
    graded = [s for s in area.subjects if s.subject_id in grades]
    if not graded:
        return None, False

    rules = config.area_rules
    dominant = area.dominant_subject_id
    if rules.calculation_type == AreaCalculationType.DOMINANT and dominant in grades:
        return grades[dominant], True

    if rules.calculation_type == AreaCalculationType.WEIGHTED:
        total_weight = sum((s.weight for s in graded), Decimal(0))
        if total_weight > 0:
            weighted = sum((grades[s.subject_id] * s.weight for s in graded), Decimal(0))
            return round_half_up(weighted / total_weight, config.decimal_places), False

    mean = sum((grades[s.subject_id] for s in graded), Decimal(0)) / Decimal(len(graded))
    return round_half_up(mean, config.decimal_places), False


def is_area_approved(area: Area, grade: Decimal, grades: Mapping[str, Decimal], config: GradingConfig) -> bool:
    rules = config.area_rules
    passed = {
        s.subject_id: grades[s.subject_id] >= config.min_passing_score
        for s in area.subjects
        if s.subject_id in grades
    }
    if rules.fail_if_any_subject_fails and not all(passed.values()):
        return False
    if rules.approval_rule == AreaApprovalRule.ALL_SUBJECTS:
        return all(passed.values())
    if rules.approval_rule == AreaApprovalRule.DOMINANT_SUBJECT and area.dominant_subject_id in passed:
        return passed[area.dominant_subject_id]
    return grade >= config.min_passing_score


def _evaluate(area: Area, grades: Mapping[str, Decimal], config: GradingConfig, standalone: bool) -> AreaResult:
    grade, dominant_applied = area_grade(area, grades, config)
    return AreaResult(
        area_id=area.id,
        name=area.name,
        grade=grade,
        approved=None if grade is None else is_area_approved(area, grade, grades, config),
        subject_grades={sid: grades[sid] for sid in area.subject_ids if sid in grades},
        failed_subjects=sorted(
            sid for sid in area.subject_ids
            if sid in grades and grades[sid] < config.min_passing_score
        ),
        ungraded_subjects=sorted(sid for sid in area.subject_ids if sid not in grades),
        dominant_subject_id=area.dominant_subject_id,
        dominant_subject_applied=dominant_applied,
        standalone=standalone,
    )


def rollup_areas(
    grades: Mapping[str, Decimal],
    config: GradingConfig,
    subject_ids: Optional[Iterable[str]] = None,
) -> List[AreaResult]:
    """
    Group subject grades (subject id -> final grade) into area results.

    `subject_ids` is the group's subject list; configured areas with none of
    their subjects in it are skipped and subjects outside every area become
    standalone areas. Defaults to the graded subjects.
    """
    universe = set(grades) | set(subject_ids or [])
    assigned = set()
    results = []
    for area in config.areas:
        members = tuple(s for s in area.subjects if s.subject_id in universe)
        if not members:
            continue
        assigned.update(s.subject_id for s in members)
        results.append(_evaluate(Area(area.id, area.name, members), grades, config, standalone=False))

    for sid in sorted(universe - assigned):
        alone = Area(sid, sid, (AreaSubject(sid),))
        results.append(_evaluate(alone, grades, config, standalone=True))

    logger.debug(
        "Area rollup: %d areas, %d failed", len(results), sum(1 for r in results if r.failed)
    )
    return results


# ── Recovery and alerts ─────────────────────────────────────────────

def requires_recovery(subject_id: str, area: AreaResult, config: GradingConfig) -> RecoveryRequirement:
    """Whether a subject of `area` must go to recovery under the area rules."""
    rules = config.area_rules
    grade = area.subject_grades.get(subject_id)
    if grade is None:
        return RecoveryRequirement(False, "Subject has no grade")
    if grade >= config.min_passing_score:
        return RecoveryRequirement(False, "Subject already passed")
    if rules.recovery_rule == AreaRecoveryRule.NONE:
        return RecoveryRequirement(False, "Area does not allow recovery")

    kind = rules.recovery_rule
    if area.standalone:
        return RecoveryRequirement(True, "Subject failed", kind)
    if rules.fail_if_any_subject_fails:
        return RecoveryRequirement(True, "Area is lost when any subject fails", kind)

    if rules.approval_rule == AreaApprovalRule.AREA_AVERAGE:
        if area.approved:
            return RecoveryRequirement(False, "Area passes on its average")
        return RecoveryRequirement(True, "Area average is below the passing score", kind)
    if rules.approval_rule == AreaApprovalRule.ALL_SUBJECTS:
        return RecoveryRequirement(True, "Every subject in the area must pass", kind)
    if area.dominant_subject_id is None:
        # DOMINANT_SUBJECT without a dominant subject approves on the average
        if area.approved:
            return RecoveryRequirement(False, "Area passes on its average")
        return RecoveryRequirement(True, "Area average is below the passing score", kind)
    if subject_id == area.dominant_subject_id:
        return RecoveryRequirement(True, "The dominant subject must pass", kind)
    return RecoveryRequirement(False, "Only the dominant subject decides the area")


def generate_alerts(results: Iterable[AreaResult], subject_names: Optional[Mapping[str, str]] = None) -> List[Alert]:
    names = subject_names or {}
    alerts = []
    for r in results:
        if r.failed and not r.standalone:
            alerts.append(Alert("WARNING", ALERT_AREA_NOT_APPROVED, f'Area "{r.name}" not approved', "AREA", r.area_id))
        for sid in r.failed_subjects:
            alerts.append(Alert(
                "WARNING", ALERT_SUBJECT_NOT_APPROVED, f'Subject "{names.get(sid, sid)}" not approved', "SUBJECT", sid,
            ))
    return alerts
