"""
Roster routes — load the enrollments, subjects, periods, assignments,
activities and attendance the engine computes over.
"""

from fastapi import APIRouter, HTTPException, Request

from core.models import Activity, AttendanceSummary, Enrollment, Period, Subject, TeacherAssignment, to_payload
from routes.deps import get_store, require, require_int

router = APIRouter()


def _items(payload: dict, name: str) -> list:
    items = payload.get(name)
    if not isinstance(items, list) or not items:
        raise HTTPException(400, f"'{name}' must be a non-empty list.")
    return items


@router.post("/enrollments")
async def post_enrollments(payload: dict, request: Request):
    """Expects: { "enrollments": [ { "id", "institution_id", "group_id", "year", "student_id"?, "student_name"? } ] }"""
    store = get_store(request)
    saved = [
        store.add_enrollment(Enrollment(
            id=str(require(e, "id")),
            institution_id=str(require(e, "institution_id")),
            group_id=str(require(e, "group_id")),
            year=require_int(require(e, "year"), "year"),
            student_id=str(e.get("student_id") or ""),
            student_name=str(e.get("student_name") or ""),
        ))
        for e in _items(payload, "enrollments")
    ]
    return {"saved": len(saved)}


@router.get("/enrollments/{institution_id}/{year}")
async def get_enrollments(institution_id: str, year: int, request: Request):
    return {"enrollments": to_payload(get_store(request).list_enrollments(institution_id, year))}


@router.post("/subjects")
async def post_subjects(payload: dict, request: Request):
    """Expects: { "subjects": [ { "id", "name", "group_ids": [...] } ] }"""
    store = get_store(request)
    for s in _items(payload, "subjects"):
        store.add_subject(
            Subject(id=str(require(s, "id")), name=str(s.get("name") or s["id"])),
            group_ids=[str(g) for g in s.get("group_ids", [])],
        )
    return {"saved": len(payload["subjects"])}


@router.post("/periods")
async def post_periods(payload: dict, request: Request):
    """Expects: { "periods": [ { "id", "institution_id", "year", "order", "name"? } ] }"""
    store = get_store(request)
    for p in _items(payload, "periods"):
        store.add_period(Period(
            id=str(require(p, "id")),
            institution_id=str(require(p, "institution_id")),
            year=require_int(require(p, "year"), "year"),
            order=require_int(require(p, "order"), "order"),
            name=str(p.get("name") or ""),
        ))
    return {"saved": len(payload["periods"])}


@router.get("/periods/{institution_id}/{year}")
async def get_periods(institution_id: str, year: int, request: Request):
    return {"periods": to_payload(get_store(request).list_periods(institution_id, year))}


@router.post("/assignments")
async def post_assignments(payload: dict, request: Request):
    """Expects: { "assignments": [ { "id", "subject_id", "group_id", "year", "teacher_id"? } ] }"""
    store = get_store(request)
    for a in _items(payload, "assignments"):
        store.add_teacher_assignment(TeacherAssignment(
            id=str(require(a, "id")),
            subject_id=str(require(a, "subject_id")),
            group_id=str(require(a, "group_id")),
            year=require_int(require(a, "year"), "year"),
            teacher_id=str(a.get("teacher_id") or ""),
        ))
    return {"saved": len(payload["assignments"])}


@router.post("/activities")
async def post_activities(payload: dict, request: Request):
    """Expects: { "activities": [ { "id", "dimension", "period_id", "teacher_assignment_id", "subject_id"?, "name"? } ] }"""
    store = get_store(request)
    for a in _items(payload, "activities"):
        assignment = store.get_teacher_assignment(str(require(a, "teacher_assignment_id")))
        store.add_activity(Activity(
            id=str(require(a, "id")),
            dimension=str(require(a, "dimension")),
            period_id=str(require(a, "period_id")),
            teacher_assignment_id=assignment.id,
            subject_id=str(a.get("subject_id") or assignment.subject_id),
            name=str(a.get("name") or ""),
        ))
    return {"saved": len(payload["activities"])}


@router.post("/attendance")
async def post_attendance(payload: dict, request: Request):
    """Expects: { "attendance": [ { "enrollment_id", "year", "present", "late", "absent", "total_days", ... } ] }"""
    store = get_store(request)
    for a in _items(payload, "attendance"):
        summary = AttendanceSummary(**{
            f: require_int(a.get(f, 0), f)
            for f in ("present", "late", "absent", "unexcused", "excused", "total_days")
        })
        store.set_attendance_summary(
            str(require(a, "enrollment_id")), require_int(require(a, "year"), "year"), summary
        )
    return {"saved": len(payload["attendance"])}
