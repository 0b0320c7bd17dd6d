"""
Tests for core/recovery.py — recovery capping, impact types and windows.
"""

import os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import WindowClosedError
from core.grading_config import RecoveryImpact, grading_config_from_dict
from core.models import PeriodSubjectGrade, RecoveryRecord, RecoveryTarget
from core.recovery import (
    ANNUAL_WINDOW,
    RecoveryWindow,
    find_recovery_candidates,
    recovery_window_from_dict,
    resolve_with_recovery,
    submit_recovery,
    window_for,
    window_status,
)
from core.store import InMemoryFactStore

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def D(value):
    return Decimal(str(value))


@pytest.fixture
def config():
    return grading_config_from_dict({
        "institutionId": "inst-1",
        "dimensionWeights": {"COGNITIVE": 100},
        "periodWeights": [100],
        "maxRecoveryScore": 3.5,
    })


@pytest.fixture
def window():
    return RecoveryWindow(
        target_id="P1",
        start=NOW - timedelta(days=5),
        end=NOW + timedelta(days=5),
    )


def recovery(score, submitted_at=NOW, period_id="P1"):
    return RecoveryRecord("E1", "MATH", D(score), submitted_at, RecoveryTarget.PERIOD, period_id=period_id)


class TestResolveWithRecovery:

    def test_never_lowers(self, config):
        outcome = resolve_with_recovery(D("2.8"), recovery("2.0"), config)
        assert outcome.final_grade == D("2.8")
        assert outcome.applied is False

    def test_capped_at_max_recovery(self, config):
        outcome = resolve_with_recovery(D("2.1"), recovery("4.8"), config)
        assert outcome.capped_score == D("3.5")
        assert outcome.final_grade == D("3.50")
        assert outcome.applied is True

    def test_no_recovery(self, config):
        outcome = resolve_with_recovery(D("2.5"), None, config)
        assert outcome.final_grade == D("2.5")
        assert outcome.applied is False

    def test_include_recovery_off_keeps_base(self, config):
        config = replace(config, include_recovery=False)
        outcome = resolve_with_recovery(D("2.0"), recovery("3.0"), config)
        assert outcome.final_grade == D("2.0")
        assert outcome.recovery_score == D("3.0")

    def test_adjust_to_minimum(self, config):
        config = replace(config, recovery_impact=RecoveryImpact.ADJUST_TO_MINIMUM)
        outcome = resolve_with_recovery(D("2.2"), recovery("3.4"), config)
        assert outcome.final_grade == D("3.00")

    def test_adjust_to_minimum_failed_recovery(self, config):
        config = replace(config, recovery_impact=RecoveryImpact.ADJUST_TO_MINIMUM)
        outcome = resolve_with_recovery(D("2.2"), recovery("2.6"), config)
        assert outcome.final_grade == D("2.60")

    def test_average_with_original(self, config):
        config = replace(config, recovery_impact=RecoveryImpact.AVERAGE_WITH_ORIGINAL)
        outcome = resolve_with_recovery(D("2.0"), recovery("3.5"), config)
        assert outcome.final_grade == D("2.75")

    def test_qualitative_only(self, config):
        config = replace(config, recovery_impact=RecoveryImpact.QUALITATIVE_ONLY)
        outcome = resolve_with_recovery(D("2.0"), recovery("3.5"), config)
        assert outcome.final_grade == D("2.0")
        assert outcome.applied is False

    def test_late_submission_rejected(self, config, window):
        late = recovery("3.0", submitted_at=NOW + timedelta(days=6))
        with pytest.raises(WindowClosedError) as exc_info:
            resolve_with_recovery(D("2.0"), late, config, window)
        assert exc_info.value.key["enrollment_id"] == "E1"
        assert exc_info.value.key["period_id"] == "P1"


class TestWindows:

    def test_status(self, window):
        assert window_status(window, NOW) == "open"
        assert window_status(window, NOW - timedelta(days=6)) == "upcoming"
        assert window_status(window, NOW + timedelta(days=6)) == "closed"
        assert window_status(None, NOW) == "not_configured"

    def test_manually_closed(self, window):
        assert window_status(replace(window, is_open=False), NOW) == "closed"

    def test_late_entry_extends_end(self, window):
        extended = replace(window, allow_late_entry=True, late_entry_days=3)
        assert window_status(extended, NOW + timedelta(days=7)) == "open"
        assert window_status(extended, NOW + timedelta(days=9)) == "closed"

    def test_naive_datetimes_treated_as_utc(self, window):
        assert window_status(window, NOW.replace(tzinfo=None)) == "open"

    def test_from_dict(self):
        w = recovery_window_from_dict({
            "periodId": "P2",
            "startDate": "2025-06-01T00:00:00Z",
            "endDate": "2025-06-30T23:59:59Z",
            "allowLateEntry": True,
            "lateEntryDays": 2,
        })
        assert w.target_id == "P2"
        assert w.start.tzinfo is not None
        assert w.effective_end == w.end + timedelta(days=2)

    def test_window_for_annual(self, window):
        annual = RecoveryWindow(target_id=ANNUAL_WINDOW)
        windows = {"P1": window, ANNUAL_WINDOW: annual}
        record = RecoveryRecord("E1", "MATH", D("3"), NOW, RecoveryTarget.ANNUAL, year=2025)
        assert window_for(record, windows) is annual
        assert window_for(recovery("3"), windows) is window


class TestSubmitRecovery:

    def test_accepted_in_window(self, window):
        store = InMemoryFactStore()
        submit_recovery(recovery("3.0"), window, store)
        saved = store.get_recovery("E1", "MATH", RecoveryTarget.PERIOD, period_id="P1")
        assert saved.score == D("3.0")

    def test_rejected_when_not_configured(self):
        store = InMemoryFactStore()
        with pytest.raises(WindowClosedError):
            submit_recovery(recovery("3.0"), None, store)
        assert store.get_recovery("E1", "MATH", RecoveryTarget.PERIOD, period_id="P1") is None


class TestRecoveryCandidates:

    def test_lists_failing_cells(self, config):
        grades = [
            PeriodSubjectGrade("E1", "MATH", "P1", D("2.4"), D("2.4")),
            PeriodSubjectGrade("E1", "LANG", "P1", D("3.2"), D("3.2")),
            PeriodSubjectGrade("E2", "MATH", "P1", D("1.9"), D("1.9")),
        ]
        candidates = find_recovery_candidates(grades, config)
        assert [(c["enrollment_id"], c["subject_id"]) for c in candidates] == [("E1", "MATH"), ("E2", "MATH")]
        assert candidates[0]["shortfall"] == D("0.6")

    def test_area_rules_filter_candidates(self, config):
        config = replace(config, areas=grading_config_from_dict({
            "institutionId": "inst-1",
            "dimensionWeights": {"COGNITIVE": 100},
            "periodWeights": [100],
            "areas": [{"id": "HUM", "name": "Humanidades", "subjects": [
                {"subjectId": "LANG", "weight": 60}, {"subjectId": "PHIL", "weight": 40},
            ]}],
        }).areas)
        grades = [
            # P1: area passes on its average (3.10), so LANG needs no recovery
            PeriodSubjectGrade("E1", "LANG", "P1", D("2.5"), D("2.5")),
            PeriodSubjectGrade("E1", "PHIL", "P1", D("4.0"), D("4.0")),
            # P2: area average 2.20 fails
            PeriodSubjectGrade("E1", "LANG", "P2", D("2.0"), D("2.0")),
            PeriodSubjectGrade("E1", "PHIL", "P2", D("2.5"), D("2.5")),
            PeriodSubjectGrade("E1", "MATH", "P2", D("2.0"), D("2.0")),
        ]
        candidates = find_recovery_candidates(grades, config)
        assert [(c["subject_id"], c["period_id"]) for c in candidates] == [("LANG", "P2"), ("MATH", "P2"), ("PHIL", "P2")]
        assert {c["recovery_type"] for c in candidates} == {"INDIVIDUAL_SUBJECT"}
