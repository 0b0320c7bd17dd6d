"""
Report routes — report card JSON/PDF and group grade sheet Excel endpoints.
"""

import logging
import os
import re
import uuid
from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from core.report_builder import build_report_card, generate_grade_sheet_excel, generate_report_card_pdf
from routes.deps import current_year, get_store, require, resolve

logger = logging.getLogger(__name__)

router = APIRouter()

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
REPORTS_DIR = Path(__file__).resolve().parent.parent / "generated" / "reports"


def _output_path(name: str) -> Path:
    REPORTS_DIR.mkdir(parents=True, exist_ok=True)
    return REPORTS_DIR / name


def _safe_token(value: str, fallback: str = "item") -> str:
    """Create filesystem-safe token for filenames."""
    token = re.sub(r"[^A-Za-z0-9._-]+", "_", str(value)).strip("._-")
    return token or fallback


def _safe_unlink(path: str):
    """Best-effort file deletion after response is sent."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.debug("Could not remove %s: %s", path, exc)


def _card(request: Request, enrollment_id: str, year, include_suggested: bool = False) -> dict:
    store = get_store(request)
    enrollment = store.get_enrollment(enrollment_id)
    year = year or enrollment.year
    resolved = resolve(request, enrollment.institution_id, year)
    return build_report_card(store, enrollment_id, year, resolved, include_suggested=include_suggested)


@router.get("/report-card/{enrollment_id}")
async def report_card(enrollment_id: str, request: Request, year: int = 0, include_suggested: bool = False):
    """Report card data; include_suggested previews achievements not yet approved."""
    return _card(request, enrollment_id, year or None, include_suggested)


@router.post("/report-card-pdf")
async def report_card_pdf(payload: dict, request: Request):
    """Generate a student's report card PDF. Expects: { "enrollment_id", "year"? }"""
    enrollment_id = str(require(payload, "enrollment_id"))
    card = _card(request, enrollment_id, current_year(payload) if payload.get("year") is not None else None)
    school_name = payload.get("school_name") or SCHOOL_NAME

    report_id = str(uuid.uuid4())[:8]
    token = _safe_token(enrollment_id, fallback="student")
    output_path = _output_path(f"report_card_{token}_{report_id}.pdf")
    generate_report_card_pdf(str(output_path), card, school_name)

    return FileResponse(
        str(output_path),
        media_type="application/pdf",
        filename=f"Report_Card_{token}_{card['year']}.pdf",
        background=BackgroundTask(_safe_unlink, str(output_path)),
    )


@router.post("/grade-sheet")
async def grade_sheet(payload: dict, request: Request):
    """
    Export the grade sheet of an institution (optionally one group) as Excel.
    Expects: { "institution_id", "year", "group_id"? }
    """
    store = get_store(request)
    institution_id = str(require(payload, "institution_id"))
    year = current_year(payload)
    group_id = payload.get("group_id")

    enrollments = [
        e for e in store.list_enrollments(institution_id, year)
        if group_id is None or e.group_id == group_id
    ]
    if not enrollments:
        raise HTTPException(404, "No enrollments found for this institution/year.")

    resolved = resolve(request, institution_id, year)
    cards = [build_report_card(store, e.id, year, resolved) for e in enrollments]

    report_id = str(uuid.uuid4())[:8]
    output_path = _output_path(f"grade_sheet_{report_id}.xlsx")
    generate_grade_sheet_excel(str(output_path), cards, payload.get("school_name") or SCHOOL_NAME)

    suffix = f"_{_safe_token(group_id)}" if group_id else ""
    return FileResponse(
        str(output_path),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=f"Grade_Sheet_{_safe_token(institution_id)}{suffix}_{year}.xlsx",
        background=BackgroundTask(_safe_unlink, str(output_path)),
    )
