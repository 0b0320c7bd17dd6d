"""
Shared fixtures — a small seeded school used by store-backed tests.

Institution inst-1, year 2025, group G1 with three subjects and two periods.
Each subject/period has one activity per dimension:
- E1 scores 4.5 / 4.0 / 5.0  -> 4.40 ALTO everywhere
- E2 scores 2.0 / 2.5 / 3.0  -> 2.40 BAJO everywhere, 65% attendance
- E3 has no scores at all
"""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.models import Activity, AttendanceSummary, Enrollment, Period, Subject, TeacherAssignment
from core.store import InMemoryFactStore

INSTITUTION = "inst-1"
YEAR = 2025
GROUP = "G1"
SUBJECTS = ["MATH", "LANG", "SCI"]
PERIODS = ["P1", "P2"]
DIMENSIONS = ["COGNITIVE", "PROCEDURAL", "ATTITUDINAL"]

GRADING = {
    "institutionId": INSTITUTION,
    "dimensionWeights": {"COGNITIVE": 40, "PROCEDURAL": 40, "ATTITUDINAL": 20},
    "periodWeights": [50, 50],
    "minPassingScore": 3.0,
    "maxRecoveryScore": 3.0,
    "maxFailedAreas": 2,
    "minAttendance": 75,
}


def activity_id(subject: str, period: str, dimension: str) -> str:
    return f"{subject}-{period}-{dimension[:3]}"


def record_all(store, enrollment_id: str, scores):
    """Give the enrollment the same three dimension scores in every subject/period."""
    for subject in SUBJECTS:
        for period in PERIODS:
            for dimension, score in zip(DIMENSIONS, scores):
                store.record_score(enrollment_id, activity_id(subject, period, dimension), Decimal(str(score)))


@pytest.fixture
def store():
    s = InMemoryFactStore()
    s.set_grading_config(INSTITUTION, GRADING)

    for order, pid in enumerate(PERIODS, start=1):
        s.add_period(Period(id=pid, institution_id=INSTITUTION, year=YEAR, order=order, name=f"Period {order}"))

    for subject in SUBJECTS:
        s.add_subject(Subject(id=subject, name=subject.title()), group_ids=[GROUP])
        s.add_teacher_assignment(TeacherAssignment(id=f"TA-{subject}", subject_id=subject, group_id=GROUP, year=YEAR))
        for period in PERIODS:
            for dimension in DIMENSIONS:
                s.add_activity(Activity(
                    id=activity_id(subject, period, dimension),
                    dimension=dimension,
                    period_id=period,
                    teacher_assignment_id=f"TA-{subject}",
                    subject_id=subject,
                ))

    for eid, name in [("E1", "Ana Torres"), ("E2", "Luis Pérez"), ("E3", "Sofía Gómez")]:
        s.add_enrollment(Enrollment(id=eid, institution_id=INSTITUTION, group_id=GROUP, year=YEAR, student_name=name))

    record_all(s, "E1", (4.5, 4.0, 5.0))
    record_all(s, "E2", (2.0, 2.5, 3.0))

    s.set_attendance_summary("E1", YEAR, AttendanceSummary(present=185, late=5, absent=10, total_days=200))
    s.set_attendance_summary("E2", YEAR, AttendanceSummary(present=120, late=10, absent=70, unexcused=50, total_days=200))
    return s
