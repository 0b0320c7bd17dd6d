"""
Achievement routes — authoring, suggestions, bulk generation and approval.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from core.achievements import approve, bulk_generate, create_achievement, generate_suggestion, list_unapproved
from core.completeness import validate_completeness
from core.grading_config import PERFORMANCE_LEVELS
from core.models import to_payload
from routes.deps import current_year, get_store, require, require_int, resolve

logger = logging.getLogger(__name__)

router = APIRouter()


def _assignment_context(request: Request, teacher_assignment_id: str, institution_id: str):
    store = get_store(request)
    assignment = store.get_teacher_assignment(teacher_assignment_id)
    return store, assignment, resolve(request, institution_id, assignment.year)


@router.put("/config/{institution_id}")
async def put_achievement_config(institution_id: str, payload: dict, request: Request):
    config = get_store(request).set_achievement_config(institution_id, payload)
    return to_payload(config)


@router.get("/config/{institution_id}")
async def get_achievement_config(institution_id: str, request: Request):
    return to_payload(get_store(request).get_achievement_config(institution_id))


@router.post("/")
async def post_achievement(payload: dict, request: Request):
    """
    Create an achievement for a teacher assignment and period.
    Expects: { "teacher_assignment_id", "period_id", "base_description", "order_number"?, "is_promotional"? }
    """
    store = get_store(request)
    assignment = store.get_teacher_assignment(str(require(payload, "teacher_assignment_id")))
    period = store.get_period(str(require(payload, "period_id")))
    order = payload.get("order_number")
    achievement = create_achievement(
        store,
        assignment.id,
        period.id,
        str(require(payload, "base_description")),
        order_number=require_int(order, "order_number") if order is not None else None,
        is_promotional=bool(payload.get("is_promotional", False)),
    )
    return to_payload(achievement)


@router.get("/")
async def list_achievements(teacher_assignment_id: str, period_id: str, request: Request):
    return {"achievements": to_payload(get_store(request).list_achievements(teacher_assignment_id, period_id))}


@router.post("/suggest")
async def suggest(payload: dict, request: Request):
    """Preview the suggested text and judgment for one level."""
    store = get_store(request)
    achievement = store.get_achievement(str(require(payload, "achievement_id")))
    institution_id = str(require(payload, "institution_id"))
    level = str(require(payload, "level")).upper()
    if level not in PERFORMANCE_LEVELS:
        raise HTTPException(400, f"Unknown performance level '{level}'.")
    resolved = resolve(request, institution_id, current_year(payload))
    return to_payload(generate_suggestion(achievement, level, resolved.templates, institution_id))


@router.post("/{achievement_id}/bulk")
async def bulk(achievement_id: str, payload: dict, request: Request):
    """
    Upsert suggestions for many students.
    Expects: { "institution_id", "student_grades": { "<enrollment_id>": <grade>, ... }, "year"? }
    """
    grades = payload.get("student_grades")
    if not isinstance(grades, dict) or not grades:
        raise HTTPException(400, "'student_grades' must be a non-empty object.")
    institution_id = str(require(payload, "institution_id"))
    resolved = resolve(request, institution_id, current_year(payload))
    result = bulk_generate(
        achievement_id,
        institution_id,
        grades,
        get_store(request),
        resolved.grading,
        resolved.templates,
    )
    return {**to_payload(result), "processed": result.processed}


@router.get("/student/{student_achievement_id}")
async def get_student_achievement(student_achievement_id: str, request: Request):
    return to_payload(get_store(request).get_student_achievement(student_achievement_id))


@router.post("/student/{student_achievement_id}/approve")
async def approve_student_achievement(student_achievement_id: str, payload: dict, request: Request):
    """
    Approve text (and optionally judgment).
    Expects: { "approved_text", "approved_judgment"?, "approved_by"? }
    """
    sa = approve(
        student_achievement_id,
        str(require(payload, "approved_text")),
        get_store(request),
        approved_judgment=payload.get("approved_judgment"),
        approved_by=payload.get("approved_by"),
    )
    return to_payload(sa)


@router.get("/unapproved")
async def unapproved(teacher_assignment_id: str, period_id: str, institution_id: str, request: Request):
    store, assignment, resolved = _assignment_context(request, teacher_assignment_id, institution_id)
    pending = list_unapproved(store, assignment.id, period_id, resolved.achievement)
    return {"count": len(pending), "student_achievements": to_payload(pending)}


@router.get("/completeness")
async def completeness(teacher_assignment_id: str, period_id: str, institution_id: str, request: Request):
    """Advisory: has the teacher authored the configured number of achievements?"""
    store, assignment, resolved = _assignment_context(request, teacher_assignment_id, institution_id)
    return validate_completeness(
        assignment.id,
        period_id,
        resolved.achievement.achievements_per_period,
        store.list_achievements(assignment.id, period_id),
    )
