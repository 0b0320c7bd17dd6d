"""
Recompute routes — single-enrollment and institution-wide recomputation.
"""

from typing import Optional

from fastapi import APIRouter, Request

from core.models import to_payload
from core.recompute import recompute_enrollment_async, recompute_institution
from routes.deps import current_year, get_locks, get_resolver, get_store, require_int

router = APIRouter()


@router.post("/enrollment/{enrollment_id}")
async def recompute_one(enrollment_id: str, request: Request, payload: Optional[dict] = None):
    """Recompute one enrollment bottom-up. Body: { "year"? } (defaults to the enrollment's year)."""
    payload = payload or {}
    store = get_store(request)
    enrollment = store.get_enrollment(enrollment_id)
    year = current_year(payload) if payload.get("year") is not None else enrollment.year
    resolved = get_resolver(request).resolve(enrollment.institution_id, year)
    report = await recompute_enrollment_async(store, enrollment_id, year, resolved, get_locks(request))
    return to_payload(report)


@router.post("/institution/{institution_id}")
async def recompute_all(institution_id: str, payload: dict, request: Request):
    """
    Recompute every enrollment of an institution, e.g. after a config change.
    Expects: { "year", "max_workers"? }
    """
    year = current_year(payload)
    max_workers = payload.get("max_workers")
    report = await recompute_institution(
        get_store(request),
        institution_id,
        year,
        get_locks(request),
        resolver=get_resolver(request),
        max_workers=require_int(max_workers, "max_workers") if max_workers is not None else None,
    )
    return {**to_payload(report), "was_cancelled": report.was_cancelled}
