"""
Grade routes — configuration, aggregation, classification and recovery endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import pandas as pd
from fastapi import APIRouter, HTTPException, Request

from core.aggregator import (
    PeriodGradeInput,
    compute_annual_subject_grade,
    compute_period_grades_frame,
    compute_period_subject_grade,
)
from core.classifier import classify, scale_thresholds
from core.models import RecoveryRecord, RecoveryTarget, ScoreEntry, to_payload
from core.numeric import as_float, to_decimal
from core.recovery import (
    find_recovery_candidates,
    parse_datetime,
    recovery_window_from_dict,
    submit_recovery,
    window_for,
    window_status,
)
from core.score_frame import normalize_scores
from routes.deps import (
    get_store,
    grading_from_payload,
    require,
    require_decimal,
    resolve,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _config_summary(config) -> dict:
    return {
        "institution_id": config.institution_id,
        "scale": scale_thresholds(config.scale),
        "dimension_weights": {k: float(v) for k, v in config.dimension_weights.items()},
        "period_weights": [float(w) for w in config.period_weights],
        "period_calculation_mode": config.period_calculation_mode.value,
        "annual_calculation_mode": config.annual_calculation_mode.value,
        "decimal_places": config.decimal_places,
        "min_passing_score": float(config.min_passing_score),
        "include_recovery": config.include_recovery,
        "max_recovery_score": float(config.max_recovery_score),
        "recovery_impact": config.recovery_impact.value,
        "max_failed_areas": config.max_failed_areas,
        "min_attendance": float(config.min_attendance),
        "conditional_max_failed_areas": config.conditional_max_failed_areas,
    }


# ── Configuration ───────────────────────────────────────────────────

@router.put("/config/{institution_id}")
async def put_grading_config(institution_id: str, payload: dict, request: Request):
    """Validate and store an institution's grading config."""
    config = get_store(request).set_grading_config(institution_id, payload)
    logger.info("Grading config updated for institution %s", institution_id)
    return _config_summary(config)


@router.get("/config/{institution_id}")
async def get_grading_config(institution_id: str, request: Request):
    return _config_summary(get_store(request).get_grading_config(institution_id))


@router.put("/recovery-windows/{institution_id}/{year}")
async def put_recovery_windows(institution_id: str, year: int, payload: dict, request: Request):
    """
    Store recovery windows.
    Expects: { "windows": [ { "target_id": "<period id>|ANNUAL", "start": ..., "end": ..., ... } ] }
    """
    raw = payload.get("windows")
    if not isinstance(raw, list):
        raise HTTPException(400, "'windows' must be a list.")
    store = get_store(request)
    windows = []
    for entry in raw:
        try:
            window = recovery_window_from_dict(entry)
        except (TypeError, ValueError) as exc:
            raise HTTPException(400, f"Invalid recovery window: {exc}")
        store.set_recovery_window(institution_id, year, window)
        windows.append(to_payload(window))
    return {"institution_id": institution_id, "year": year, "windows": windows}


# ── Computation ─────────────────────────────────────────────────────

@router.post("/period")
async def period_grade(payload: dict, request: Request):
    """
    Compute one period subject grade.
    Expects: { "institution_id" | "config", "scores": [ { "activity_id", "dimension", "score" } ] }
    """
    config = grading_from_payload(request, payload)
    raw_scores = payload.get("scores")
    if not isinstance(raw_scores, list):
        raise HTTPException(400, "'scores' must be a list.")
    entries = [
        ScoreEntry(str(s.get("activity_id", i)), str(s.get("dimension", "GENERAL")), to_decimal(s.get("score")))
        for i, s in enumerate(raw_scores)
    ]
    key = {k: payload.get(k) for k in ("enrollment_id", "subject_id", "period_id")}
    result = compute_period_subject_grade(entries, config, key)
    band = classify(result.grade, config.scale, key)
    return {
        "grade": as_float(result.grade),
        "level": band.level,
        "label": band.display_label,
        "dimension_means": {d: as_float(m) for d, m in result.dimension_means.items()},
        "weights_used": {d: as_float(w) for d, w in result.weights_used.items()},
        "scored_activities": result.scored_activities,
    }


@router.post("/annual")
async def annual_grade(payload: dict, request: Request):
    """
    Compute an annual subject grade from period grades.
    Expects: { "institution_id" | "config", "period_grades": [ { "period_id", "order", "grade" } ] }
    """
    config = grading_from_payload(request, payload)
    raw = payload.get("period_grades")
    if not isinstance(raw, list):
        raise HTTPException(400, "'period_grades' must be a list.")
    inputs = [
        PeriodGradeInput(str(p.get("period_id", i + 1)), int(p.get("order", i + 1)), to_decimal(p.get("grade")))
        for i, p in enumerate(raw)
    ]
    key = {k: payload.get(k) for k in ("enrollment_id", "subject_id", "year")}
    result = compute_annual_subject_grade(inputs, config, key)
    band = classify(result.grade, config.scale, key)
    return {
        "grade": as_float(result.grade),
        "level": band.level,
        "label": band.display_label,
        "periods_used": list(result.periods_used),
        "weights_used": {p: as_float(w) for p, w in result.weights_used.items()},
    }


@router.post("/classify")
async def classify_score(payload: dict, request: Request):
    config = grading_from_payload(request, payload)
    band = classify(require_decimal(payload, "score"), config.scale)
    return {"level": band.level, "label": band.display_label, "min": float(band.min_score), "max": float(band.max_score)}


@router.post("/frame")
async def grade_frame(payload: dict, request: Request):
    """
    Compute every period cell of a tabular score upload.
    Expects: { "institution_id" | "config", "data": [...score rows...] }
    """
    config = grading_from_payload(request, payload)
    data = payload.get("data")
    if not data:
        raise HTTPException(400, "No data provided.")
    try:
        scores, report = normalize_scores(pd.DataFrame(data), config)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    grades = compute_period_grades_frame(scores, config)
    grades = grades.astype(object).where(pd.notna(grades), None)
    return {
        "ingest_report": report,
        "grades": grades.to_dict(orient="records"),
        "graded": int((grades["status"] == "graded").sum()) if not grades.empty else 0,
    }


# ── Scores & recoveries ─────────────────────────────────────────────

@router.post("/scores")
async def record_scores(payload: dict, request: Request):
    """
    Record activity scores; a null score marks the activity as not graded.
    Expects: { "scores": [ { "enrollment_id", "activity_id", "score" } ] }
    """
    raw = payload.get("scores")
    if not isinstance(raw, list) or not raw:
        raise HTTPException(400, "'scores' must be a non-empty list.")
    store = get_store(request)
    for s in raw:
        store.record_score(str(require(s, "enrollment_id")), str(require(s, "activity_id")), to_decimal(s.get("score")))
    return {"recorded": len(raw)}


@router.post("/recoveries")
async def post_recovery(payload: dict, request: Request):
    """
    Submit a recovery score, checked against its window.
    Expects: { "institution_id", "enrollment_id", "subject_id", "score",
               "target": "PERIOD"|"ANNUAL", "period_id" | "year", "submitted_at"? }
    """
    store = get_store(request)
    enrollment = store.get_enrollment(str(require(payload, "enrollment_id")))
    try:
        target = RecoveryTarget(payload.get("target", RecoveryTarget.PERIOD.value))
        submitted_at = parse_datetime(payload.get("submitted_at")) or datetime.now(timezone.utc)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if target == RecoveryTarget.PERIOD:
        require(payload, "period_id")

    record = RecoveryRecord(
        enrollment_id=enrollment.id,
        subject_id=str(require(payload, "subject_id")),
        score=require_decimal(payload, "score"),
        submitted_at=submitted_at,
        target=target,
        period_id=payload.get("period_id"),
        year=enrollment.year,
    )
    resolved = resolve(request, enrollment.institution_id, enrollment.year)
    submit_recovery(record, window_for(record, resolved.windows), store)
    return {"accepted": True, "recovery": to_payload(record)}


@router.get("/recoveries/window/{institution_id}/{year}/{target_id}")
async def get_window_status(institution_id: str, year: int, target_id: str, request: Request):
    resolved = resolve(request, institution_id, year)
    window = resolved.windows.get(target_id)
    return {
        "target_id": target_id,
        "status": window_status(window, datetime.now(timezone.utc)),
        "window": to_payload(window) if window else None,
    }


@router.get("/recovery-candidates/{enrollment_id}")
async def recovery_candidates(enrollment_id: str, request: Request, year: Optional[int] = None):
    store = get_store(request)
    enrollment = store.get_enrollment(enrollment_id)
    year = year or enrollment.year
    config = resolve(request, enrollment.institution_id, year).grading
    grades = store.list_period_grades(enrollment_id) + store.list_annual_grades(enrollment_id, year)
    return {"enrollment_id": enrollment_id, "candidates": to_payload(find_recovery_candidates(grades, config))}


@router.get("/enrollment/{enrollment_id}")
async def enrollment_grades(enrollment_id: str, request: Request, year: Optional[int] = None):
    """Persisted period and annual grades of one enrollment."""
    store = get_store(request)
    enrollment = store.get_enrollment(enrollment_id)
    year = year or enrollment.year
    return {
        "enrollment_id": enrollment_id,
        "year": year,
        "period_grades": to_payload(store.list_period_grades(enrollment_id)),
        "annual_grades": to_payload(store.list_annual_grades(enrollment_id, year)),
    }
