"""
Tests for core/narrative.py — achievement text layout and promotion summaries.
"""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.grading_config import AchievementConfig, DisplayFormat, JudgmentPosition
from core.models import Achievement, PromotionDecision, PromotionResult, StudentAchievement
from core.narrative import compose_achievement_narrative, narrate_promotion, narrate_subject_grade


def pair(order, text, judgment=None, promotional=False, approved=True):
    achievement = Achievement(f"a{order}", "TA-MATH", "P1", order, text, is_promotional=promotional)
    sa = StudentAchievement(
        id=f"sa{order}",
        enrollment_id="E1",
        achievement_id=achievement.id,
        suggested_text=f"suggested {order}",
        suggested_judgment="suggested judgment",
        approved_text=text if approved else None,
        approved_judgment=judgment,
        is_text_approved=approved,
        is_judgment_approved=judgment is not None,
    )
    return achievement, sa


@pytest.fixture
def entries():
    return [
        pair(2, "Explica el ciclo del agua", "Buen trabajo"),
        pair(1, "Resuelve fracciones", "Excelente"),
    ]


def config(**overrides):
    return AchievementConfig("inst-1", **overrides)


class TestComposeAchievementNarrative:

    def test_list_with_judgment_after_each(self, entries):
        text = compose_achievement_narrative(entries, config())
        assert text == "- Resuelve fracciones. Excelente.\n- Explica el ciclo del agua. Buen trabajo."

    def test_paragraph_with_closing_judgment(self, entries):
        cfg = config(display_format=DisplayFormat.PARAGRAPH, judgment_position=JudgmentPosition.END_OF_ALL)
        text = compose_achievement_narrative(entries, cfg)
        assert text == "Resuelve fracciones. Explica el ciclo del agua. Buen trabajo."

    def test_judgments_disabled(self, entries):
        text = compose_achievement_narrative(entries, config(use_value_judgments=False))
        assert "Excelente" not in text

    def test_promotional_last_and_optional(self):
        entries = [pair(1, "Promocional", promotional=True), pair(2, "Regular")]
        assert compose_achievement_narrative(entries, config(judgment_position=JudgmentPosition.NONE)) == (
            "- Regular.\n- Promocional."
        )
        hidden = compose_achievement_narrative(entries, config(use_promotional_achievement=False))
        assert "Promocional" not in hidden

    def test_unapproved_skipped_unless_draft(self):
        entries = [pair(1, "Aprobado"), pair(2, "Pendiente", approved=False)]
        final = compose_achievement_narrative(entries, config())
        draft = compose_achievement_narrative(entries, config(), include_suggested=True)
        assert "suggested 2" not in final
        assert "suggested 2" in draft

    def test_nothing_approved(self):
        assert compose_achievement_narrative([pair(1, "x", approved=False)], config()) == ""


class TestNarrateGrades:

    def test_subject_grade(self):
        assert narrate_subject_grade("Math", 3.456, "Básico") == "Math: 3.46 (Básico)"
        assert narrate_subject_grade("Math", 3.0, "Básico", recovery_applied=True).endswith("after recovery")

    def test_promotion(self):
        result = PromotionResult(
            "E2", 2025, PromotionDecision.NOT_PROMOTED, 3, Decimal("65.00"),
            reasons=["3 failed subjects exceed the maximum of 2"],
        )
        text = narrate_promotion(result)
        assert text.startswith("The student is not promoted.")
        assert "3 failed subjects exceed the maximum of 2." in text
        assert "65.0%" in text

    def test_conditional_counts_areas_when_configured(self):
        result = PromotionResult(
            "E2", 2025, PromotionDecision.CONDITIONAL, 3, Decimal("90.00"),
            failed_areas=["HUMANITIES"],
        )
        assert narrate_promotion(result).startswith("The student is conditionally promoted with 1 failed area(s)")
