"""
achievements.py — Achievement suggestions and the approval workflow.

Suggestion text depends on the student's performance level:
  BAJO      "Presenta dificultades en: " + base description (lowercased)
  BASICO    "Desarrolla parcialmente: " + base description (lowercased)
  ALTO      base description
  SUPERIOR  base description
The value judgment comes from the institution's active template for the
level, or "" when there is none.

Each field (text, judgment) moves SUGGESTED -> APPROVED independently. Once a
field is approved, bulk regeneration leaves it alone: the attempt is an
ApprovalConflict that is logged and counted, never raised to the caller.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from core.classifier import classify_level
from core.errors import ApprovalConflict, EngineError
from core.grading_config import BAJO, BASICO, AchievementConfig, GradingConfig, TemplateMap
from core.models import Achievement, StudentAchievement
from core.store import new_id

logger = logging.getLogger(__name__)


LEVEL_PREFIXES: Dict[str, str] = {
    BAJO: "Presenta dificultades en: ",
    BASICO: "Desarrolla parcialmente: ",
}


@dataclass(frozen=True)
class Suggestion:
    level: str
    text: str
    judgment: str


@dataclass
class BulkResult:
    achievement_id: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped_conflicts: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged


# ── Suggestions ─────────────────────────────────────────────────────

def generate_suggestion(
    achievement: Achievement,
    level: str,
    templates: TemplateMap,
    institution_id: str,
) -> Suggestion:
    base = achievement.base_description.strip()
    prefix = LEVEL_PREFIXES.get(level)
    text = f"{prefix}{base.lower()}" if prefix else base
    return Suggestion(level=level, text=text, judgment=templates.judgment_for(institution_id, level))


def _apply_suggestion(sa: StudentAchievement, suggestion: Suggestion) -> StudentAchievement:
    """Return `sa` with a regenerated suggestion; approved fields keep theirs."""
    changes: Dict[str, Any] = {"performance_level": suggestion.level}
    if not sa.is_text_approved:
        changes["suggested_text"] = suggestion.text
    if not sa.is_judgment_approved:
        changes["suggested_judgment"] = suggestion.judgment
    return replace(sa, **changes)


def _locked_fields(sa: StudentAchievement, suggestion: Suggestion) -> List[str]:
    locked = []
    if sa.is_text_approved and sa.suggested_text != suggestion.text:
        locked.append("text")
    if sa.is_judgment_approved and sa.suggested_judgment != suggestion.judgment:
        locked.append("judgment")
    return locked


def bulk_generate(
    achievement_id: str,
    institution_id: str,
    student_grades: Mapping[str, Any],
    store,
    grading: GradingConfig,
    templates: TemplateMap,
) -> BulkResult:
    """
    Classify each student's grade through the institution scale and upsert one
    suggestion per (enrollment, achievement).

    `student_grades` maps enrollment id -> grade. Re-running with the same
    grades changes nothing. A grade outside the scale is reported for that
    student only.
    """
    achievement = store.get_achievement(achievement_id)
    result = BulkResult(achievement_id=achievement_id)

    for enrollment_id, raw_grade in student_grades.items():
        key = {"enrollment_id": enrollment_id, "achievement_id": achievement_id}
        try:
            level = classify_level(raw_grade, grading.scale, key)
            suggestion = generate_suggestion(achievement, level, templates, institution_id)

            with store.transaction(("student_achievement", enrollment_id, achievement_id)):
                existing = store.find_student_achievement(enrollment_id, achievement_id)
                if existing is None:
                    store.save_student_achievement(
                        StudentAchievement(
                            id=new_id(),
                            enrollment_id=enrollment_id,
                            achievement_id=achievement_id,
                            performance_level=level,
                            suggested_text=suggestion.text,
                            suggested_judgment=suggestion.judgment,
                        )
                    )
                    result.created += 1
                    continue

                updated = _apply_suggestion(existing, suggestion)
                locked = _locked_fields(existing, suggestion)
                if updated != existing:
                    store.save_student_achievement(updated)
                    result.updated += 1
                elif not locked:
                    result.unchanged += 1
                if locked:
                    raise ApprovalConflict(
                        f"Approved {' and '.join(locked)} not overwritten", {**key, "student_achievement_id": existing.id}
                    )
        except ApprovalConflict as exc:
            logger.warning("Skipped suggestion overwrite: %s", exc)
            result.skipped_conflicts.append(exc.to_dict())
        except EngineError as exc:
            logger.warning("Suggestion not generated: %s", exc)
            result.failures.append(exc.to_dict())

    logger.info(
        "Bulk suggestions for %s: %d created, %d updated, %d unchanged, %d conflicts, %d failures",
        achievement_id, result.created, result.updated, result.unchanged,
        len(result.skipped_conflicts), len(result.failures),
    )
    return result


# ── Approval ────────────────────────────────────────────────────────

def approve(
    student_achievement_id: str,
    approved_text: str,
    store,
    approved_judgment: Optional[str] = None,
    approved_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> StudentAchievement:
    """
    Approve a student's achievement text and, when given, its judgment.

    The judgment is marked approved iff a non-empty judgment is supplied. All
    flags, the timestamp and the approver are written in one transaction.
    """
    now = now or datetime.now(timezone.utc)
    sa = store.get_student_achievement(student_achievement_id)
    with store.transaction(("student_achievement", sa.enrollment_id, sa.achievement_id)):
        sa = store.get_student_achievement(student_achievement_id)
        has_judgment = bool(approved_judgment and approved_judgment.strip())
        changes: Dict[str, Any] = {
            "approved_text": approved_text,
            "is_text_approved": True,
            "approved_judgment": approved_judgment if has_judgment else None,
            "is_judgment_approved": has_judgment,
            "approved_at": now,
            "approved_by": approved_by,
        }
        sa = replace(sa, **changes)
        store.save_student_achievement(sa)
    logger.info("Approved student achievement %s (judgment=%s)", sa.id, sa.is_judgment_approved)
    return sa


# ── Achievements CRUD ───────────────────────────────────────────────

def create_achievement(
    store,
    teacher_assignment_id: str,
    period_id: str,
    base_description: str,
    order_number: Optional[int] = None,
    is_promotional: bool = False,
) -> Achievement:
    """Create an achievement; order defaults to the next free number."""
    if order_number is None:
        existing = store.list_achievements(teacher_assignment_id, period_id)
        order_number = max((a.order_number for a in existing), default=0) + 1
    achievement = Achievement(
        id=new_id(),
        teacher_assignment_id=teacher_assignment_id,
        period_id=period_id,
        order_number=order_number,
        base_description=base_description,
        is_promotional=is_promotional,
    )
    return store.save_achievement(achievement)


def list_unapproved(
    store,
    teacher_assignment_id: str,
    period_id: str,
    config: AchievementConfig,
) -> List[StudentAchievement]:
    """Student achievements of an assignment+period whose workflow is not complete."""
    pending = []
    for achievement in store.list_achievements(teacher_assignment_id, period_id):
        for sa in store.list_student_achievements(achievement_id=achievement.id):
            if not sa.is_complete(config.use_value_judgments):
                pending.append(sa)
    return pending
