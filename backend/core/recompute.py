"""
recompute.py — Bottom-up recomputation of derived grades.

Per enrollment, in order, each level reading what the previous one computed:
  1. period subject grade  (activity scores -> dimensions -> period)
  2. period recovery       (floored at the base grade)
  3. annual subject grade  (period final grades -> year)
  4. annual recovery
  5. classification of every final grade
  6. promotion decision

Derived grades are overwritten, never appended, so running twice on the same
inputs leaves identical results. A cell without scores is "not graded": its
stale grade is removed and it is left out of the annual mean. Nothing is
written until the whole enrollment has been computed.

Bulk mode runs one task per enrollment behind an asyncio.Semaphore, pushing
the synchronous work to the default executor. A keyed asyncio.Lock registry
keeps at most one recompute in flight per enrollment, shared by the single
and bulk paths. Cancellation is cooperative and checked between enrollments.
Per-enrollment failures are collected into the BatchReport; only an invalid
institution config stops the batch before it starts.
"""

import asyncio
import logging
import os
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.aggregator import PeriodGradeInput, compute_annual_subject_grade, compute_period_subject_grade
from core.classifier import classify_level
from core.config_resolver import ConfigResolver, ResolvedConfig
from core.errors import ConfigInvariantViolation, EngineError, InsufficientData, OutOfRangeError
from core.models import AnnualSubjectGrade, PeriodSubjectGrade, PromotionResult, RecoveryTarget
from core.promotion import decide
from core.recovery import resolve_with_recovery

logger = logging.getLogger(__name__)


def default_max_workers() -> int:
    return max(1, int(os.getenv("RECOMPUTE_MAX_WORKERS", "8")))


@dataclass
class EnrollmentReport:
    enrollment_id: str
    year: int
    period_grades: int = 0
    annual_grades: int = 0
    not_graded: List[Dict[str, Any]] = field(default_factory=list)
    issues: List[Dict[str, Any]] = field(default_factory=list)
    promotion: Optional[PromotionResult] = None


@dataclass
class BatchReport:
    institution_id: str
    year: int
    total: int = 0
    succeeded: List[str] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)

    @property
    def was_cancelled(self) -> bool:
        return bool(self.cancelled)


# ── Single enrollment ───────────────────────────────────────────────

def _period_level(store, enrollment_id, subject_id, period, grading, report) -> Optional[PeriodSubjectGrade]:
    key = {"enrollment_id": enrollment_id, "subject_id": subject_id, "period_id": period.id}
    scores = store.get_scores(enrollment_id, subject_id, period.id)
    try:
        result = compute_period_subject_grade(scores, grading, key)
        recovery = store.get_recovery(enrollment_id, subject_id, RecoveryTarget.PERIOD, period_id=period.id)
        outcome = resolve_with_recovery(result.grade, recovery, grading)
        level = classify_level(outcome.final_grade, grading.scale, key)
    except InsufficientData:
        report.not_graded.append(key)
        return None
    except OutOfRangeError as exc:
        logger.warning("Period grade skipped: %s", exc)
        report.issues.append(exc.to_dict())
        return None

    report.period_grades += 1
    return PeriodSubjectGrade(
        enrollment_id=enrollment_id,
        subject_id=subject_id,
        period_id=period.id,
        base_grade=result.grade,
        final_grade=outcome.final_grade,
        level=level,
        recovery_applied=outcome.applied,
        dimension_means=dict(result.dimension_means),
    )


def _annual_level(store, enrollment_id, subject_id, year, periods, period_grades, grading, report) -> Optional[AnnualSubjectGrade]:
    key = {"enrollment_id": enrollment_id, "subject_id": subject_id, "year": year}
    inputs = []
    for p in periods:
        computed = period_grades.get((subject_id, p.id))
        inputs.append(PeriodGradeInput(p.id, p.order, computed.final_grade if computed else None))
    try:
        result = compute_annual_subject_grade(inputs, grading, key)
        recovery = store.get_recovery(enrollment_id, subject_id, RecoveryTarget.ANNUAL, year=year)
        outcome = resolve_with_recovery(result.grade, recovery, grading)
        level = classify_level(outcome.final_grade, grading.scale, key)
    except InsufficientData:
        report.not_graded.append(key)
        return None
    except OutOfRangeError as exc:
        logger.warning("Annual grade skipped: %s", exc)
        report.issues.append(exc.to_dict())
        return None

    report.annual_grades += 1
    return AnnualSubjectGrade(
        enrollment_id=enrollment_id,
        subject_id=subject_id,
        year=year,
        base_grade=result.grade,
        final_grade=outcome.final_grade,
        level=level,
        recovery_applied=outcome.applied,
        periods_used=list(result.periods_used),
    )


def recompute_enrollment(store, enrollment_id: str, year: int, resolved: ResolvedConfig) -> EnrollmentReport:
    """
    Recompute every derived grade and the promotion decision for one enrollment.

    All levels are computed in memory first and written in one step, so an
    error on any subject (e.g. a ConfigInvariantViolation) leaves the
    enrollment's persisted results untouched.
    """
    grading = resolved.grading
    report = EnrollmentReport(enrollment_id=enrollment_id, year=year)

    with store.transaction(("recompute", enrollment_id)):
        enrollment = store.get_enrollment(enrollment_id)
        subjects = store.get_subjects_for_group(enrollment.group_id)
        periods = store.list_periods(enrollment.institution_id, year)

        period_grades: Dict[Tuple[str, str], Optional[PeriodSubjectGrade]] = {}
        annual_grades: Dict[str, Optional[AnnualSubjectGrade]] = {}
        for subject in subjects:
            for period in periods:
                period_grades[(subject.id, period.id)] = _period_level(
                    store, enrollment_id, subject.id, period, grading, report
                )
            annual_grades[subject.id] = _annual_level(
                store, enrollment_id, subject.id, year, periods, period_grades, grading, report
            )

        promotion = decide(
            enrollment,
            year,
            [g for g in annual_grades.values() if g is not None],
            store.get_attendance_summary(enrollment_id, year),
            grading,
            subjects=subjects,
        )
        store.replace_derived_results(enrollment_id, year, period_grades, annual_grades, promotion)
        report.promotion = promotion

    logger.debug(
        "Recomputed %s/%s: %d period, %d annual, decision=%s",
        enrollment_id, year, report.period_grades, report.annual_grades, promotion.decision.value,
    )
    return report


# ── Async / bulk ────────────────────────────────────────────────────

class EnrollmentLocks:
    """
    Keyed asyncio.Lock registry: one in-flight recompute per enrollment.

    Entries are weak; a lock is dropped once no holder or waiter references it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_key(self, enrollment_id: str) -> asyncio.Lock:
        lock = self._locks.get(enrollment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[enrollment_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


async def recompute_enrollment_async(
    store,
    enrollment_id: str,
    year: int,
    resolved: ResolvedConfig,
    locks: EnrollmentLocks,
) -> EnrollmentReport:
    async with locks.for_key(enrollment_id):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, recompute_enrollment, store, enrollment_id, year, resolved)


async def recompute_institution(
    store,
    institution_id: str,
    year: int,
    locks: EnrollmentLocks,
    resolver: Optional[ConfigResolver] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> BatchReport:
    """
    Recompute every enrollment of an institution/year.

    Raises ConfigInvariantViolation (nothing recomputed) when the institution's
    config is invalid; every other failure is isolated to its enrollment.
    """
    resolver = resolver or ConfigResolver(store)
    try:
        resolved = resolver.resolve(institution_id, year)
    except ConfigInvariantViolation:
        logger.error("Bulk recompute blocked for institution %s: invalid config", institution_id)
        raise

    enrollments = store.list_enrollments(institution_id, year)
    report = BatchReport(institution_id=institution_id, year=year, total=len(enrollments))
    semaphore = asyncio.Semaphore(max_workers or default_max_workers())

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    async def run_one(enrollment_id: str) -> None:
        async with semaphore:
            if cancelled():
                report.cancelled.append(enrollment_id)
                return
            try:
                await recompute_enrollment_async(store, enrollment_id, year, resolved, locks)
                report.succeeded.append(enrollment_id)
            except EngineError as exc:
                logger.warning("Recompute failed for enrollment %s: %s", enrollment_id, exc)
                report.failures.append({"enrollment_id": enrollment_id, **exc.to_dict()})
            except Exception as exc:
                logger.exception("Unexpected recompute failure for enrollment %s", enrollment_id)
                report.failures.append({
                    "enrollment_id": enrollment_id,
                    "code": "INTERNAL_ERROR",
                    "message": str(exc),
                    "key": {"enrollment_id": enrollment_id},
                })

    await asyncio.gather(*(run_one(e.id) for e in enrollments))

    report.succeeded.sort()
    report.cancelled.sort()
    report.failures.sort(key=lambda f: f["enrollment_id"])
    if report.cancelled:
        logger.info("Bulk recompute for %s cancelled; %d enrollments skipped", institution_id, len(report.cancelled))
    logger.info(
        "Bulk recompute for %s/%s: %d ok, %d failed, %d cancelled",
        institution_id, year, len(report.succeeded), len(report.failures), len(report.cancelled),
    )
    return report
