"""
Tests for the HTTP layer — routing, payload handling and error JSON.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.recompute import EnrollmentLocks
from main import app

INSTITUTION = "inst-1"
YEAR = 2025


@pytest.fixture
def client(store, monkeypatch):
    """Test client bound to the seeded store."""
    monkeypatch.delenv("CONFIG_STORE_URL", raising=False)
    monkeypatch.setattr(app.state, "store", store)
    monkeypatch.setattr(app.state, "locks", EnrollmentLocks())
    with TestClient(app) as c:
        yield c


def error_of(res):
    body = res.json()
    assert "generated_at" in body
    return body["error"]


class TestHealth:

    def test_health(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        assert res.json()["status"] == "ok"

    def test_config(self, client):
        body = client.get("/api/config").json()
        assert "decimal_places" in body
        assert body["remote_config_store"] is False


class TestGradeConfigRoutes:

    def test_invalid_config_is_422(self, client):
        res = client.put("/api/grades/config/inst-2", json={
            "dimensionWeights": {"COGNITIVE": 60, "PROCEDURAL": 30},
            "periodWeights": [100],
        })
        assert res.status_code == 422
        err = error_of(res)
        assert err["code"] == "CONFIG_INVARIANT_VIOLATION"
        assert err["key"] == {"institution_id": "inst-2"}

    def test_missing_config_is_404(self, client):
        res = client.get("/api/grades/config/nowhere")
        assert res.status_code == 404
        assert error_of(res)["code"] == "NOT_FOUND"

    def test_round_trip(self, client):
        body = client.get(f"/api/grades/config/{INSTITUTION}").json()
        assert body["period_weights"] == [50.0, 50.0]
        assert body["scale"][0]["level"] == "SUPERIOR"


class TestComputationRoutes:

    def test_period_grade(self, client):
        res = client.post("/api/grades/period", json={
            "institution_id": INSTITUTION,
            "scores": [
                {"activity_id": "A1", "dimension": "COGNITIVE", "score": 4.5},
                {"activity_id": "A2", "dimension": "PROCEDURAL", "score": 4.0},
                {"activity_id": "A3", "dimension": "ATTITUDINAL", "score": 5.0},
            ],
        })
        assert res.status_code == 200
        body = res.json()
        assert body["grade"] == pytest.approx(4.4)
        assert body["level"] == "ALTO"

    def test_inline_config(self, client):
        res = client.post("/api/grades/annual", json={
            "config": {"institutionId": "x", "dimensionWeights": {"COGNITIVE": 100}, "periodWeights": [20, 30, 50]},
            "period_grades": [{"order": 1, "grade": 3.0}, {"order": 2, "grade": None}, {"order": 3, "grade": 5.0}],
        })
        assert res.status_code == 200
        assert res.json()["grade"] == pytest.approx(4.43)

    def test_ungraded_is_422(self, client):
        res = client.post("/api/grades/period", json={
            "institution_id": INSTITUTION,
            "enrollment_id": "E3",
            "scores": [{"activity_id": "A1", "dimension": "COGNITIVE", "score": None}],
        })
        assert res.status_code == 422
        err = error_of(res)
        assert err["code"] == "INSUFFICIENT_DATA"
        assert err["key"]["enrollment_id"] == "E3"

    def test_classify_out_of_range(self, client):
        res = client.post("/api/grades/classify", json={"institution_id": INSTITUTION, "score": 9})
        assert res.status_code == 422
        assert error_of(res)["code"] == "OUT_OF_RANGE"

    def test_missing_scores_is_400(self, client):
        res = client.post("/api/grades/period", json={"institution_id": INSTITUTION})
        assert res.status_code == 400

    def test_frame(self, client):
        res = client.post("/api/grades/frame", json={
            "institution_id": INSTITUTION,
            "data": [
                {"enrollmentId": "E1", "subjectId": "MATH", "periodId": "P1", "activityId": "A1", "dimension": "COGNITIVE", "score": 4.0},
                {"enrollmentId": "E1", "subjectId": "MATH", "periodId": "P1", "activityId": "A2", "dimension": "PROCEDURAL", "score": 3.0},
            ],
        })
        assert res.status_code == 200
        body = res.json()
        assert body["graded"] == 1
        assert body["grades"][0]["grade"] == pytest.approx(3.5)


class TestRecoveryRoutes:

    @pytest.fixture
    def windows(self, client):
        client.put(f"/api/grades/recovery-windows/{INSTITUTION}/{YEAR}", json={"windows": [
            {"target_id": "P1", "start": "2025-04-01T00:00:00Z", "end": "2025-04-15T00:00:00Z"},
        ]})

    def test_inside_window(self, client, windows, store):
        res = client.post("/api/grades/recoveries", json={
            "enrollment_id": "E2", "subject_id": "MATH", "period_id": "P1",
            "score": 3.2, "submitted_at": "2025-04-10T09:00:00Z",
        })
        assert res.status_code == 200
        assert store.get_recovery("E2", "MATH", period_id="P1") is not None

    def test_outside_window_is_409(self, client, windows):
        res = client.post("/api/grades/recoveries", json={
            "enrollment_id": "E2", "subject_id": "MATH", "period_id": "P1",
            "score": 3.2, "submitted_at": "2025-05-01T09:00:00Z",
        })
        assert res.status_code == 409
        err = error_of(res)
        assert err["code"] == "WINDOW_CLOSED"
        assert err["key"]["enrollment_id"] == "E2"

    def test_candidates_after_recompute(self, client):
        client.post("/api/recompute/enrollment/E2")
        body = client.get("/api/grades/recovery-candidates/E2").json()
        assert {c["subject_id"] for c in body["candidates"]} == {"MATH", "LANG", "SCI"}


class TestAchievementRoutes:

    @pytest.fixture
    def achievement_id(self, client):
        res = client.post("/api/achievements/", json={
            "teacher_assignment_id": "TA-MATH", "period_id": "P1",
            "base_description": "Resuelve problemas con fracciones",
        })
        assert res.status_code == 200
        return res.json()["id"]

    def test_duplicate_order_is_409(self, client, achievement_id):
        res = client.post("/api/achievements/", json={
            "teacher_assignment_id": "TA-MATH", "period_id": "P1",
            "base_description": "Otro", "order_number": 1,
        })
        assert res.status_code == 409
        assert error_of(res)["code"] == "DUPLICATE"

    def test_bulk_then_approve_then_conflict(self, client, achievement_id, store):
        bulk_url = f"/api/achievements/{achievement_id}/bulk"
        first = client.post(bulk_url, json={"institution_id": INSTITUTION, "student_grades": {"E1": 4.4, "E2": 2.4}})
        assert first.json()["created"] == 2

        sa = store.find_student_achievement("E1", achievement_id)
        approved = client.post(f"/api/achievements/student/{sa.id}/approve", json={"approved_text": "Texto final"})
        assert approved.json()["text_state"] == "APPROVED"

        second = client.post(bulk_url, json={"institution_id": INSTITUTION, "student_grades": {"E1": 2.0}}).json()
        assert len(second["skipped_conflicts"]) == 1
        assert store.get_student_achievement(sa.id).approved_text == "Texto final"

    def test_unapproved_and_completeness(self, client, achievement_id):
        client.post(f"/api/achievements/{achievement_id}/bulk", json={"institution_id": INSTITUTION, "student_grades": {"E1": 4.4}})
        params = {"teacher_assignment_id": "TA-MATH", "period_id": "P1", "institution_id": INSTITUTION}
        assert client.get("/api/achievements/unapproved", params=params).json()["count"] == 1
        assert client.get("/api/achievements/completeness", params=params).json()["is_complete"] is True

    def test_unknown_level(self, client, achievement_id):
        res = client.post("/api/achievements/suggest", json={
            "achievement_id": achievement_id, "institution_id": INSTITUTION, "level": "EXCELLENT",
        })
        assert res.status_code == 400


class TestPromotionAndRecomputeRoutes:

    def test_recompute_then_read_promotion(self, client):
        res = client.post("/api/recompute/enrollment/E2", json={"year": YEAR})
        assert res.status_code == 200
        assert res.json()["promotion"]["decision"] == "NOT_PROMOTED"

        body = client.get(f"/api/promotion/E2/{YEAR}").json()
        assert body["triggering_rules"] == ["maxFailedAreas", "minAttendance"]
        assert body["narrative"].startswith("The student is not promoted.")

    def test_promotion_missing_is_404(self, client):
        res = client.get(f"/api/promotion/E1/{YEAR}")
        assert res.status_code == 404
        assert error_of(res)["key"] == {"enrollment_id": "E1", "year": YEAR}

    def test_institution_recompute(self, client):
        res = client.post(f"/api/recompute/institution/{INSTITUTION}", json={"year": YEAR, "max_workers": 2})
        body = res.json()
        assert body["succeeded"] == ["E1", "E2", "E3"]
        assert body["was_cancelled"] is False

    def test_report_card(self, client):
        client.post(f"/api/recompute/institution/{INSTITUTION}", json={"year": YEAR})
        card = client.get("/api/reports/report-card/E1", params={"year": YEAR}).json()
        assert card["promotion"]["decision"] == "PROMOTED"
        assert len(card["subjects"]) == 3


class TestRosterRoutes:

    def test_enrollments(self, client):
        res = client.post("/api/roster/enrollments", json={"enrollments": [
            {"id": "E9", "institution_id": INSTITUTION, "group_id": "G1", "year": YEAR, "student_name": "Nuevo"},
        ]})
        assert res.json() == {"saved": 1}
        listed = client.get(f"/api/roster/enrollments/{INSTITUTION}/{YEAR}").json()["enrollments"]
        assert "E9" in {e["id"] for e in listed}

    def test_empty_list_is_400(self, client):
        assert client.post("/api/roster/periods", json={"periods": []}).status_code == 400

    def test_periods_listed_per_institution(self, client):
        res = client.post("/api/roster/periods", json={"periods": [
            {"id": "OTHER-P1", "institution_id": "inst-2", "year": YEAR, "order": 1},
        ]})
        assert res.json() == {"saved": 1}
        ours = client.get(f"/api/roster/periods/{INSTITUTION}/{YEAR}").json()["periods"]
        theirs = client.get(f"/api/roster/periods/inst-2/{YEAR}").json()["periods"]
        assert [p["id"] for p in ours] == ["P1", "P2"]
        assert [p["id"] for p in theirs] == ["OTHER-P1"]

    def test_period_without_institution_is_400(self, client):
        res = client.post("/api/roster/periods", json={"periods": [{"id": "P9", "year": YEAR, "order": 3}]})
        assert res.status_code == 400
