"""
Tests for core/report_builder.py — report card data, PDF and Excel generation.
"""

import os
import sys
import tempfile
from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.achievements import approve, bulk_generate, create_achievement
from core.config_resolver import ConfigResolver
from core.grading_config import Area, AreaSubject
from core.recompute import recompute_enrollment
from core.report_builder import _period_series, build_report_card, generate_grade_sheet_excel, generate_report_card_pdf

INSTITUTION = "inst-1"
YEAR = 2025
SCHOOL_NAME = "Test School"


@pytest.fixture
def resolved(store):
    return ConfigResolver(store).resolve(INSTITUTION, YEAR)


@pytest.fixture
def computed(store, resolved):
    """Seeded store with recomputed grades and one approved achievement for E1."""
    for eid in ("E1", "E2", "E3"):
        recompute_enrollment(store, eid, YEAR, resolved)
    achievement = create_achievement(store, "TA-MATH", "P1", "Resuelve problemas con fracciones")
    bulk_generate(achievement.id, INSTITUTION, {"E1": 4.4, "E2": 2.4}, store, resolved.grading, resolved.templates)
    sa = store.find_student_achievement("E1", achievement.id)
    approve(sa.id, "Resuelve problemas con fracciones", store, approved_judgment="Buen desempeño")
    return store


class TestBuildReportCard:

    def test_grades_and_promotion(self, computed, resolved):
        card = build_report_card(computed, "E1", YEAR, resolved)
        math = next(s for s in card["subjects"] if s["subject_id"] == "MATH")
        assert math["period_grades"]["P1"]["grade"] == pytest.approx(4.4)
        assert math["annual"]["level"] == "ALTO"
        assert math["annual"]["label"] == "Alto"
        assert card["promotion"]["decision"] == "PROMOTED"
        assert card["promotion"]["narrative"].startswith("The student is promoted")
        assert [p["id"] for p in card["periods"]] == ["P1", "P2"]

    def test_approved_achievement_only(self, computed, resolved):
        e1 = build_report_card(computed, "E1", YEAR, resolved)
        e2 = build_report_card(computed, "E2", YEAR, resolved)
        math_e1 = next(s for s in e1["subjects"] if s["subject_id"] == "MATH")
        math_e2 = next(s for s in e2["subjects"] if s["subject_id"] == "MATH")
        assert "Buen desempeño" in math_e1["achievements"]["P1"]
        assert math_e2["achievements"] == {}

    def test_draft_includes_suggestions(self, computed, resolved):
        card = build_report_card(computed, "E2", YEAR, resolved, include_suggested=True)
        math = next(s for s in card["subjects"] if s["subject_id"] == "MATH")
        assert "Presenta dificultades en" in math["achievements"]["P1"]

    def test_ungraded_enrollment(self, computed, resolved):
        card = build_report_card(computed, "E3", YEAR, resolved)
        assert all(s["annual"] is None for s in card["subjects"])
        assert all(s["period_grades"] == {} for s in card["subjects"])

    def test_areas_and_alerts(self, store):
        grading = store.get_grading_config(INSTITUTION)
        store.set_grading_config(INSTITUTION, replace(
            grading, areas=(Area("SCIENCES", "Ciencias", (AreaSubject("MATH"), AreaSubject("SCI"))),),
        ))
        resolved = ConfigResolver(store).resolve(INSTITUTION, YEAR)
        recompute_enrollment(store, "E2", YEAR, resolved)
        card = build_report_card(store, "E2", YEAR, resolved)

        assert [(a["area_id"], a["standalone"], a["approved"]) for a in card["areas"]] == [
            ("SCIENCES", False, False), ("LANG", True, False),
        ]
        assert card["areas"][0]["grade"] == pytest.approx(2.4)
        assert [a["code"] for a in card["alerts"]] == [
            "AREA_NOT_APPROVED", "SUBJECT_NOT_APPROVED", "SUBJECT_NOT_APPROVED", "SUBJECT_NOT_APPROVED",
        ]
        assert card["promotion"]["failed_areas"] == ["SCIENCES", "LANG"]
        assert card["promotion"]["triggering_rules"] == ["minAttendance"]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "report_card.pdf")
            generate_report_card_pdf(path, card, SCHOOL_NAME)
            assert os.path.getsize(path) > 0

    def test_no_areas_configured(self, computed, resolved):
        card = build_report_card(computed, "E2", YEAR, resolved)
        assert card["areas"] == []
        assert card["alerts"] == []


class TestGenerateReportCardPdf:

    def test_creates_pdf_file(self, computed, resolved):
        card = build_report_card(computed, "E2", YEAR, resolved)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "report_card.pdf")
            generate_report_card_pdf(path, card, SCHOOL_NAME)
            assert os.path.getsize(path) > 0
            with open(path, "rb") as f:
                header = f.read(5)
            assert header == b"%PDF-"

    def test_ungraded_card_still_renders(self, computed, resolved):
        card = build_report_card(computed, "E3", YEAR, resolved)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "report_card.pdf")
            generate_report_card_pdf(path, card, SCHOOL_NAME)
            assert os.path.exists(path)

    def test_missing_period_is_a_gap_not_zero(self, computed, resolved):
        for dim in ("COG", "PRO", "ATT"):
            computed.record_score("E1", f"MATH-P2-{dim}", None)
        recompute_enrollment(computed, "E1", YEAR, resolved)
        card = build_report_card(computed, "E1", YEAR, resolved)
        series = _period_series(card)
        names = [s["subject_id"] for s in card["subjects"]]
        math = names.index("MATH")
        assert np.isnan(series["P2"][math])
        assert series["P1"][math] == pytest.approx(4.4)
        assert not np.isnan(series["P2"]).all()
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "report_card.pdf")
            generate_report_card_pdf(path, card, SCHOOL_NAME)
            assert os.path.getsize(path) > 0


class TestGenerateGradeSheetExcel:

    def test_sheets_and_rows(self, computed, resolved):
        cards = [build_report_card(computed, eid, YEAR, resolved) for eid in ("E1", "E2")]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "grade_sheet.xlsx")
            generate_grade_sheet_excel(path, cards, SCHOOL_NAME)
            # Close handle before tmpdir cleanup
            xl = pd.ExcelFile(path)
            sheet_names = list(xl.sheet_names)
            promotion = xl.parse("Promotion")
            xl.close()
        assert sheet_names == ["Grades", "Promotion", "Info"]
        assert len(promotion) == 2
