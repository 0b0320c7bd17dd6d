"""
store.py — In-memory fact store.

Implements the collaborator contracts the engine reads and writes through:

- Config store   grading/achievement configs and recovery windows
- Roster         enrollments, subjects, periods, teacher assignments
- Attendance     per (enrollment, year) summaries
- Facts          activities, scores, derived grades, recoveries,
                 achievements, student achievements, promotion results

Reads and writes are guarded by one internal lock. `transaction(key)` hands
out a per-key re-entrant lock so a read-check-write sequence on one entity
(e.g. the achievement approval check + suggestion upsert) is atomic with
respect to any other writer using the same key. Per-key locks are held
weakly and disappear once no transaction uses them.
"""

import threading
import uuid
import weakref
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Hashable, Iterator, List, Mapping, Optional, Tuple, Union

from core.errors import DuplicateError, NotFoundError
from core.grading_config import (
    DEFAULT_JUDGMENT_TEMPLATES,
    AchievementConfig,
    GradingConfig,
    achievement_config_from_dict,
    grading_config_from_dict,
)
from core.models import (
    Achievement,
    Activity,
    AnnualSubjectGrade,
    AttendanceSummary,
    Enrollment,
    Period,
    PeriodSubjectGrade,
    PromotionResult,
    RecoveryRecord,
    RecoveryTarget,
    ScoreEntry,
    StudentAchievement,
    Subject,
    TeacherAssignment,
)


def new_id() -> str:
    return uuid.uuid4().hex


class InMemoryFactStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._tx_locks: "weakref.WeakValueDictionary[Hashable, Any]" = weakref.WeakValueDictionary()

        self._grading_configs: Dict[str, GradingConfig] = {}
        self._achievement_configs: Dict[str, AchievementConfig] = {}
        self._windows: Dict[Tuple[str, int], Dict[str, Any]] = {}

        self._enrollments: Dict[str, Enrollment] = {}
        self._subjects: Dict[str, Subject] = {}
        self._group_subjects: Dict[str, List[str]] = {}
        self._periods: Dict[str, Period] = {}
        self._assignments: Dict[str, TeacherAssignment] = {}
        self._attendance: Dict[Tuple[str, int], AttendanceSummary] = {}

        self._activities: Dict[str, Activity] = {}
        self._scores: Dict[Tuple[str, str], Optional[Decimal]] = {}
        self._period_grades: Dict[Tuple[str, str, str], PeriodSubjectGrade] = {}
        self._annual_grades: Dict[Tuple[str, str, int], AnnualSubjectGrade] = {}
        self._recoveries: Dict[Tuple, RecoveryRecord] = {}
        self._achievements: Dict[str, Achievement] = {}
        self._student_achievements: Dict[str, StudentAchievement] = {}
        self._promotions: Dict[Tuple[str, int], PromotionResult] = {}

    # ── Transactions ────────────────────────────────────────────────

    @contextmanager
    def transaction(self, key: Hashable) -> Iterator[None]:
        with self._lock:
            lock = self._tx_locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._tx_locks[key] = lock
        with lock:
            yield

    # ── Config store ────────────────────────────────────────────────

    def set_grading_config(self, institution_id: str, config: Union[GradingConfig, Mapping[str, Any]]) -> GradingConfig:
        if not isinstance(config, GradingConfig):
            config = grading_config_from_dict(config, institution_id)
        with self._lock:
            self._grading_configs[institution_id] = config
        return config

    def get_grading_config(self, institution_id: str) -> GradingConfig:
        with self._lock:
            config = self._grading_configs.get(institution_id)
        if config is None:
            raise NotFoundError("No grading config for institution", {"institution_id": institution_id})
        return config

    def set_achievement_config(
        self, institution_id: str, config: Union[AchievementConfig, Mapping[str, Any]]
    ) -> AchievementConfig:
        if not isinstance(config, AchievementConfig):
            config = achievement_config_from_dict(config, institution_id)
        with self._lock:
            self._achievement_configs[institution_id] = config
        return config

    def get_achievement_config(self, institution_id: str) -> AchievementConfig:
        with self._lock:
            config = self._achievement_configs.get(institution_id)
        if config is None:
            return AchievementConfig(institution_id=institution_id, templates=DEFAULT_JUDGMENT_TEMPLATES)
        return config

    def set_recovery_window(self, institution_id: str, year: int, window) -> None:
        with self._lock:
            self._windows.setdefault((institution_id, year), {})[window.target_id] = window

    def get_recovery_windows(self, institution_id: str, year: int) -> Dict[str, Any]:
        with self._lock:
            return dict(self._windows.get((institution_id, year), {}))

    # ── Roster ──────────────────────────────────────────────────────

    def add_enrollment(self, enrollment: Enrollment) -> Enrollment:
        with self._lock:
            self._enrollments[enrollment.id] = enrollment
        return enrollment

    def get_enrollment(self, enrollment_id: str) -> Enrollment:
        with self._lock:
            enrollment = self._enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found", {"enrollment_id": enrollment_id})
        return enrollment

    def list_enrollments(self, institution_id: str, year: int) -> List[Enrollment]:
        with self._lock:
            found = [
                e for e in self._enrollments.values()
                if e.institution_id == institution_id and e.year == year
            ]
        return sorted(found, key=lambda e: e.id)

    def add_subject(self, subject: Subject, group_ids: Optional[List[str]] = None) -> Subject:
        with self._lock:
            self._subjects[subject.id] = subject
            for gid in group_ids or []:
                subjects = self._group_subjects.setdefault(gid, [])
                if subject.id not in subjects:
                    subjects.append(subject.id)
        return subject

    def get_subject(self, subject_id: str) -> Subject:
        with self._lock:
            subject = self._subjects.get(subject_id)
        if subject is None:
            raise NotFoundError("Subject not found", {"subject_id": subject_id})
        return subject

    def get_subjects_for_group(self, group_id: str) -> List[Subject]:
        with self._lock:
            return [self._subjects[sid] for sid in self._group_subjects.get(group_id, [])]

    def add_period(self, period: Period) -> Period:
        with self._lock:
            self._periods[period.id] = period
        return period

    def get_period(self, period_id: str) -> Period:
        with self._lock:
            period = self._periods.get(period_id)
        if period is None:
            raise NotFoundError("Period not found", {"period_id": period_id})
        return period

    def list_periods(self, institution_id: str, year: int) -> List[Period]:
        with self._lock:
            found = [
                p for p in self._periods.values()
                if p.institution_id == institution_id and p.year == year
            ]
        return sorted(found, key=lambda p: (p.order, p.id))

    def add_teacher_assignment(self, assignment: TeacherAssignment) -> TeacherAssignment:
        with self._lock:
            self._assignments[assignment.id] = assignment
        return assignment

    def get_teacher_assignment(self, assignment_id: str) -> TeacherAssignment:
        with self._lock:
            assignment = self._assignments.get(assignment_id)
        if assignment is None:
            raise NotFoundError("Teacher assignment not found", {"teacher_assignment_id": assignment_id})
        return assignment

    # ── Attendance ──────────────────────────────────────────────────

    def set_attendance_summary(self, enrollment_id: str, year: int, summary: AttendanceSummary) -> None:
        with self._lock:
            self._attendance[(enrollment_id, year)] = summary

    def get_attendance_summary(self, enrollment_id: str, year: int) -> AttendanceSummary:
        with self._lock:
            return self._attendance.get((enrollment_id, year), AttendanceSummary())

    # ── Activities & scores ─────────────────────────────────────────

    def add_activity(self, activity: Activity) -> Activity:
        with self._lock:
            self._activities[activity.id] = activity
        return activity

    def get_activity(self, activity_id: str) -> Activity:
        with self._lock:
            activity = self._activities.get(activity_id)
        if activity is None:
            raise NotFoundError("Activity not found", {"activity_id": activity_id})
        return activity

    def list_activities(self, subject_id: Optional[str] = None, period_id: Optional[str] = None) -> List[Activity]:
        with self._lock:
            found = [
                a for a in self._activities.values()
                if (subject_id is None or a.subject_id == subject_id)
                and (period_id is None or a.period_id == period_id)
            ]
        return sorted(found, key=lambda a: a.id)

    def record_score(self, enrollment_id: str, activity_id: str, score: Optional[Decimal]) -> None:
        """Store one score; None marks the activity as not yet graded."""
        self.get_activity(activity_id)
        with self._lock:
            self._scores[(enrollment_id, activity_id)] = score

    def get_scores(self, enrollment_id: str, subject_id: str, period_id: str) -> List[ScoreEntry]:
        with self._lock:
            return [
                ScoreEntry(a.id, a.dimension, self._scores[(enrollment_id, a.id)])
                for a in sorted(self._activities.values(), key=lambda a: a.id)
                if a.subject_id == subject_id
                and a.period_id == period_id
                and (enrollment_id, a.id) in self._scores
            ]

    # ── Derived grades ──────────────────────────────────────────────

    def get_period_grade(self, enrollment_id: str, subject_id: str, period_id: str) -> Optional[PeriodSubjectGrade]:
        with self._lock:
            return self._period_grades.get((enrollment_id, subject_id, period_id))

    def list_period_grades(self, enrollment_id: Optional[str] = None) -> List[PeriodSubjectGrade]:
        with self._lock:
            found = [
                g for g in self._period_grades.values()
                if enrollment_id is None or g.enrollment_id == enrollment_id
            ]
        return sorted(found, key=lambda g: (g.enrollment_id, g.subject_id, g.period_id))

    def get_annual_grade(self, enrollment_id: str, subject_id: str, year: int) -> Optional[AnnualSubjectGrade]:
        with self._lock:
            return self._annual_grades.get((enrollment_id, subject_id, year))

    def list_annual_grades(self, enrollment_id: str, year: int) -> List[AnnualSubjectGrade]:
        with self._lock:
            found = [
                g for g in self._annual_grades.values()
                if g.enrollment_id == enrollment_id and g.year == year
            ]
        return sorted(found, key=lambda g: g.subject_id)

    def replace_derived_results(
        self,
        enrollment_id: str,
        year: int,
        period_grades: Mapping[Tuple[str, str], Optional[PeriodSubjectGrade]],
        annual_grades: Mapping[str, Optional[AnnualSubjectGrade]],
        promotion: PromotionResult,
    ) -> None:
        """
        Write one enrollment's recompute in a single step.

        period_grades is keyed by (subject_id, period_id) and annual_grades by
        subject_id; a None value deletes the stored grade.
        """
        with self._lock:
            for (subject_id, period_id), grade in period_grades.items():
                key = (enrollment_id, subject_id, period_id)
                if grade is None:
                    self._period_grades.pop(key, None)
                else:
                    self._period_grades[key] = grade
            for subject_id, grade in annual_grades.items():
                key = (enrollment_id, subject_id, year)
                if grade is None:
                    self._annual_grades.pop(key, None)
                else:
                    self._annual_grades[key] = grade
            self._promotions[(enrollment_id, year)] = promotion

    # ── Recoveries ──────────────────────────────────────────────────

    @staticmethod
    def _recovery_key(enrollment_id, subject_id, target, period_id=None, year=None) -> Tuple:
        target = RecoveryTarget(target)
        ref = period_id if target == RecoveryTarget.PERIOD else year
        return (enrollment_id, subject_id, target, ref)

    def save_recovery(self, record: RecoveryRecord) -> None:
        key = self._recovery_key(record.enrollment_id, record.subject_id, record.target, record.period_id, record.year)
        with self._lock:
            self._recoveries[key] = record

    def get_recovery(
        self,
        enrollment_id: str,
        subject_id: str,
        target: RecoveryTarget = RecoveryTarget.PERIOD,
        period_id: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Optional[RecoveryRecord]:
        with self._lock:
            return self._recoveries.get(self._recovery_key(enrollment_id, subject_id, target, period_id, year))

    # ── Achievements ────────────────────────────────────────────────

    def save_achievement(self, achievement: Achievement) -> Achievement:
        with self._lock:
            for other in self._achievements.values():
                if (
                    other.id != achievement.id
                    and other.teacher_assignment_id == achievement.teacher_assignment_id
                    and other.period_id == achievement.period_id
                    and other.order_number == achievement.order_number
                ):
                    raise DuplicateError(
                        "An achievement with this order number already exists",
                        {
                            "teacher_assignment_id": achievement.teacher_assignment_id,
                            "period_id": achievement.period_id,
                            "order_number": achievement.order_number,
                        },
                    )
            self._achievements[achievement.id] = achievement
        return achievement

    def get_achievement(self, achievement_id: str) -> Achievement:
        with self._lock:
            achievement = self._achievements.get(achievement_id)
        if achievement is None:
            raise NotFoundError("Achievement not found", {"achievement_id": achievement_id})
        return achievement

    def list_achievements(self, teacher_assignment_id: str, period_id: str) -> List[Achievement]:
        with self._lock:
            found = [
                a for a in self._achievements.values()
                if a.teacher_assignment_id == teacher_assignment_id and a.period_id == period_id
            ]
        return sorted(found, key=lambda a: a.order_number)

    # ── Student achievements ────────────────────────────────────────

    def save_student_achievement(self, sa: StudentAchievement) -> StudentAchievement:
        with self._lock:
            self._student_achievements[sa.id] = sa
        return sa

    def get_student_achievement(self, student_achievement_id: str) -> StudentAchievement:
        with self._lock:
            sa = self._student_achievements.get(student_achievement_id)
        if sa is None:
            raise NotFoundError("Student achievement not found", {"student_achievement_id": student_achievement_id})
        return sa

    def find_student_achievement(self, enrollment_id: str, achievement_id: str) -> Optional[StudentAchievement]:
        with self._lock:
            for sa in self._student_achievements.values():
                if sa.enrollment_id == enrollment_id and sa.achievement_id == achievement_id:
                    return sa
        return None

    def list_student_achievements(
        self,
        achievement_id: Optional[str] = None,
        enrollment_id: Optional[str] = None,
    ) -> List[StudentAchievement]:
        with self._lock:
            found = [
                sa for sa in self._student_achievements.values()
                if (achievement_id is None or sa.achievement_id == achievement_id)
                and (enrollment_id is None or sa.enrollment_id == enrollment_id)
            ]
        return sorted(found, key=lambda sa: (sa.achievement_id, sa.enrollment_id))

    # ── Promotion ───────────────────────────────────────────────────

    def save_promotion_result(self, result: PromotionResult) -> None:
        with self._lock:
            self._promotions[(result.enrollment_id, result.year)] = result

    def get_promotion_result(self, enrollment_id: str, year: int) -> Optional[PromotionResult]:
        with self._lock:
            return self._promotions.get((enrollment_id, year))
