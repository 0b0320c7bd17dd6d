"""
models.py — Fact entities read and written by the engine.

Grade/score facts are mutable and owned by the fact store; derived grades are
recomputed in place (never appended). StudentAchievement carries the
two-phase approval state per field.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class PromotionDecision(str, Enum):
    PROMOTED = "PROMOTED"
    NOT_PROMOTED = "NOT_PROMOTED"
    CONDITIONAL = "CONDITIONAL"


class RecoveryTarget(str, Enum):
    PERIOD = "PERIOD"
    ANNUAL = "ANNUAL"


class ApprovalState(str, Enum):
    SUGGESTED = "SUGGESTED"
    APPROVED = "APPROVED"


# ── Roster ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Enrollment:
    id: str
    institution_id: str
    group_id: str
    year: int
    student_id: str = ""
    student_name: str = ""


@dataclass(frozen=True)
class Subject:
    id: str
    name: str


@dataclass(frozen=True)
class Period:
    id: str
    institution_id: str
    year: int
    order: int
    name: str = ""


@dataclass(frozen=True)
class TeacherAssignment:
    id: str
    subject_id: str
    group_id: str
    year: int
    teacher_id: str = ""


@dataclass(frozen=True)
class AttendanceSummary:
    present: int = 0
    late: int = 0
    absent: int = 0
    unexcused: int = 0
    excused: int = 0
    total_days: int = 0


# ── Scores ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Activity:
    id: str
    dimension: str
    period_id: str
    teacher_assignment_id: str
    subject_id: str
    name: str = ""


@dataclass(frozen=True)
class ScoreEntry:
    """One student's score on one activity; score None means not yet graded."""
    activity_id: str
    dimension: str
    score: Optional[Decimal]


@dataclass
class PeriodSubjectGrade:
    enrollment_id: str
    subject_id: str
    period_id: str
    base_grade: Decimal
    final_grade: Decimal
    level: Optional[str] = None
    recovery_applied: bool = False
    dimension_means: Dict[str, Decimal] = field(default_factory=dict)


@dataclass
class AnnualSubjectGrade:
    enrollment_id: str
    subject_id: str
    year: int
    base_grade: Decimal
    final_grade: Decimal
    level: Optional[str] = None
    recovery_applied: bool = False
    periods_used: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RecoveryRecord:
    enrollment_id: str
    subject_id: str
    score: Decimal
    submitted_at: datetime
    target: RecoveryTarget = RecoveryTarget.PERIOD
    period_id: Optional[str] = None
    year: Optional[int] = None

    @property
    def key(self) -> Dict[str, Any]:
        return {
            "enrollment_id": self.enrollment_id,
            "subject_id": self.subject_id,
            "period_id": self.period_id,
            "year": self.year,
        }


# ── Achievements ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Achievement:
    id: str
    teacher_assignment_id: str
    period_id: str
    order_number: int
    base_description: str
    is_promotional: bool = False


@dataclass
class StudentAchievement:
    id: str
    enrollment_id: str
    achievement_id: str
    performance_level: Optional[str] = None
    suggested_text: str = ""
    suggested_judgment: str = ""
    approved_text: Optional[str] = None
    approved_judgment: Optional[str] = None
    is_text_approved: bool = False
    is_judgment_approved: bool = False
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    @property
    def text_state(self) -> ApprovalState:
        return ApprovalState.APPROVED if self.is_text_approved else ApprovalState.SUGGESTED

    @property
    def judgment_state(self) -> ApprovalState:
        return ApprovalState.APPROVED if self.is_judgment_approved else ApprovalState.SUGGESTED

    def is_complete(self, use_value_judgments: bool = True) -> bool:
        if not self.is_text_approved:
            return False
        return self.is_judgment_approved or not use_value_judgments


# ── Promotion ───────────────────────────────────────────────────────

@dataclass
class PromotionResult:
    enrollment_id: str
    year: int
    decision: PromotionDecision
    failed_subject_count: int
    attendance_pct: Optional[Decimal]
    triggering_rules: List[str] = field(default_factory=list)
    failed_subjects: List[str] = field(default_factory=list)
    ungraded_subjects: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)
    failed_areas: List[str] = field(default_factory=list)


# ── Serialization ───────────────────────────────────────────────────

def to_payload(obj: Any) -> Any:
    """Recursively coerce dataclasses, Decimals and enums to JSON-safe types."""
    if is_dataclass(obj) and not isinstance(obj, type):
        out = {f.name: to_payload(getattr(obj, f.name)) for f in fields(obj)}
        if isinstance(obj, StudentAchievement):
            out["text_state"] = obj.text_state.value
            out["judgment_state"] = obj.judgment_state.value
        return out
    if isinstance(obj, dict):
        return {str(k): to_payload(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_payload(v) for v in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return obj
