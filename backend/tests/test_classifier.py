"""
Tests for core/classifier.py — performance level bands and boundaries.
"""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.classifier import classify, classify_level, scale_thresholds
from core.errors import OutOfRangeError
from core.grading_config import DEFAULT_SCALE, ScaleBand


@pytest.fixture
def two_band_scale():
    return (
        ScaleBand("SUPERIOR", Decimal("4.6"), Decimal("5.0")),
        ScaleBand("ALTO", Decimal("4.0"), Decimal("4.5")),
    )


class TestClassify:

    def test_boundary_goes_to_higher_band(self, two_band_scale):
        assert classify_level(Decimal("4.6"), two_band_scale) == "SUPERIOR"

    def test_inside_band(self):
        assert classify_level(Decimal("3.75"), DEFAULT_SCALE) == "BASICO"

    def test_gap_between_bands_falls_to_lower(self):
        # 4.55 sits between ALTO max 4.5 and SUPERIOR min 4.6
        assert classify_level(Decimal("4.55"), DEFAULT_SCALE) == "ALTO"

    def test_exact_minimum_of_scale(self):
        assert classify_level(Decimal("1.0"), DEFAULT_SCALE) == "BAJO"

    def test_exact_maximum_of_scale(self):
        assert classify_level(Decimal("5.0"), DEFAULT_SCALE) == "SUPERIOR"

    def test_accepts_floats_and_strings(self):
        assert classify_level(4.2, DEFAULT_SCALE) == "ALTO"
        assert classify_level("2.9", DEFAULT_SCALE) == "BAJO"

    def test_band_order_does_not_matter(self, two_band_scale):
        reversed_scale = tuple(reversed(two_band_scale))
        assert classify(Decimal("4.6"), reversed_scale).level == "SUPERIOR"

    def test_below_scale_raises(self):
        with pytest.raises(OutOfRangeError):
            classify(Decimal("0.5"), DEFAULT_SCALE)

    def test_above_scale_raises(self, two_band_scale):
        with pytest.raises(OutOfRangeError):
            classify(Decimal("5.01"), two_band_scale)

    def test_non_numeric_raises(self):
        with pytest.raises(OutOfRangeError):
            classify("abc", DEFAULT_SCALE)

    def test_error_carries_key(self):
        with pytest.raises(OutOfRangeError) as exc_info:
            classify(Decimal("9"), DEFAULT_SCALE, {"enrollment_id": "E1", "subject_id": "MATH"})
        assert exc_info.value.key == {"enrollment_id": "E1", "subject_id": "MATH"}


class TestScaleThresholds:

    def test_highest_first(self):
        levels = [t["level"] for t in scale_thresholds(DEFAULT_SCALE)]
        assert levels == ["SUPERIOR", "ALTO", "BASICO", "BAJO"]

    def test_labels_and_bounds(self):
        first = scale_thresholds(DEFAULT_SCALE)[0]
        assert first == {"level": "SUPERIOR", "label": "Superior", "min": 4.6, "max": 5.0}
