"""
Promotion routes — decide and read end-of-year promotion results.
"""

from fastapi import APIRouter, Request

from core.errors import NotFoundError
from core.models import to_payload
from core.narrative import narrate_promotion
from core.promotion import decide
from routes.deps import current_year, get_store, require, resolve

router = APIRouter()


@router.post("/decide")
async def decide_promotion(payload: dict, request: Request):
    """
    Decide promotion from the enrollment's persisted annual grades.
    Expects: { "enrollment_id", "year"? }
    """
    store = get_store(request)
    enrollment = store.get_enrollment(str(require(payload, "enrollment_id")))
    year = current_year(payload) if payload.get("year") is not None else enrollment.year
    config = resolve(request, enrollment.institution_id, year).grading

    with store.transaction(("recompute", enrollment.id)):
        result = decide(
            enrollment,
            year,
            store.list_annual_grades(enrollment.id, year),
            store.get_attendance_summary(enrollment.id, year),
            config,
            subjects=store.get_subjects_for_group(enrollment.group_id),
        )
        store.save_promotion_result(result)
    return {**to_payload(result), "narrative": narrate_promotion(result)}


@router.get("/{enrollment_id}/{year}")
async def get_promotion(enrollment_id: str, year: int, request: Request):
    result = get_store(request).get_promotion_result(enrollment_id, year)
    if result is None:
        raise NotFoundError("No promotion decision yet", {"enrollment_id": enrollment_id, "year": year})
    return {**to_payload(result), "narrative": narrate_promotion(result)}
