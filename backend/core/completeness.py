"""
completeness.py — Advisory check that a teacher has authored enough achievements.

Only non-promotional achievements of the given assignment and period count.
Nothing is blocked on the result.
"""

from typing import Any, Dict, Iterable

from core.models import Achievement


def validate_completeness(
    teacher_assignment_id: str,
    period_id: str,
    required_count: int,
    achievements: Iterable[Achievement],
) -> Dict[str, Any]:
    current = sum(
        1 for a in achievements
        if a.teacher_assignment_id == teacher_assignment_id
        and a.period_id == period_id
        and not a.is_promotional
    )
    missing = max(0, required_count - current)
    return {
        "teacher_assignment_id": teacher_assignment_id,
        "period_id": period_id,
        "is_complete": missing == 0,
        "current_count": current,
        "required_count": required_count,
        "missing_count": missing,
    }
