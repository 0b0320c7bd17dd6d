"""
narrative.py — Report-card text built from approved achievements.

Achievements are listed in order. Display options come from the institution's
achievement config:
- displayFormat     LIST (one bullet per achievement) or PARAGRAPH
- judgmentPosition  END_OF_EACH, END_OF_ALL (one closing judgment, taken from
                    the last achievement that has one) or NONE

Only approved text/judgments are used unless `include_suggested` is set,
which the draft preview uses to show suggestions still pending approval.
Uses f-string templates only.
"""

from typing import Iterable, List, Optional, Tuple

from core.grading_config import AchievementConfig, DisplayFormat, JudgmentPosition
from core.models import Achievement, PromotionDecision, PromotionResult, StudentAchievement


def _text(sa: StudentAchievement, include_suggested: bool) -> str:
    if sa.is_text_approved:
        return (sa.approved_text or "").strip()
    return sa.suggested_text.strip() if include_suggested else ""


def _judgment(sa: StudentAchievement, include_suggested: bool) -> str:
    if sa.is_judgment_approved:
        return (sa.approved_judgment or "").strip()
    return sa.suggested_judgment.strip() if include_suggested else ""


def _sentence(text: str) -> str:
    text = text.strip()
    if text and text[-1] not in ".!?":
        text += "."
    return text


# ── Achievements ────────────────────────────────────────────────────

def compose_achievement_narrative(
    entries: Iterable[Tuple[Achievement, StudentAchievement]],
    config: AchievementConfig,
    include_suggested: bool = False,
) -> str:
    """Combine a student's achievements for one subject and period into report text."""
    ordered = sorted(entries, key=lambda e: (e[0].is_promotional, e[0].order_number))
    if not config.use_promotional_achievement:
        ordered = [e for e in ordered if not e[0].is_promotional]

    position = config.judgment_position if config.use_value_judgments else JudgmentPosition.NONE

    parts: List[str] = []
    closing: Optional[str] = None
    for _, sa in ordered:
        text = _text(sa, include_suggested)
        if not text:
            continue
        judgment = _judgment(sa, include_suggested)
        if position == JudgmentPosition.END_OF_EACH and judgment:
            parts.append(f"{_sentence(text)} {_sentence(judgment)}")
        else:
            parts.append(_sentence(text))
        if judgment:
            closing = judgment

    if not parts:
        return ""

    if config.display_format == DisplayFormat.LIST:
        body = "\n".join(f"- {p}" for p in parts)
        separator = "\n"
    else:
        body = " ".join(parts)
        separator = " "

    if position == JudgmentPosition.END_OF_ALL and closing:
        body = f"{body}{separator}{_sentence(closing)}"
    return body


# ── Grades & promotion ──────────────────────────────────────────────

def narrate_subject_grade(subject_name: str, grade: float, level_label: str, recovery_applied: bool = False) -> str:
    note = " after recovery" if recovery_applied else ""
    return f"{subject_name}: {grade:.2f} ({level_label}){note}"


def narrate_promotion(result: PromotionResult) -> str:
    if result.decision == PromotionDecision.PROMOTED:
        opening = "The student is promoted to the next grade."
    elif result.decision == PromotionDecision.CONDITIONAL and result.failed_areas:
        opening = (
            f"The student is conditionally promoted with {len(result.failed_areas)} "
            f"failed area(s) pending recovery."
        )
    elif result.decision == PromotionDecision.CONDITIONAL:
        opening = (
            f"The student is conditionally promoted with {result.failed_subject_count} "
            f"failed subject(s) pending recovery."
        )
    else:
        opening = "The student is not promoted."

    details = [_sentence(r) for r in result.reasons]
    if result.attendance_pct is not None:
        details.append(f"Attendance for the year: {float(result.attendance_pct):.1f}%.")
    return " ".join([opening] + details)
