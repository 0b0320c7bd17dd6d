"""
classifier.py — Performance level classification.

Maps a numeric grade to a performance level through the institution's scale
(e.g. SUPERIOR / ALTO / BASICO / BAJO). Bands are checked from the highest
minimum down and the first band whose minimum the score reaches wins, so a
score sitting on a boundary goes to the higher band.

The classifier never guesses: a score below the lowest minimum or above the
highest maximum raises OutOfRangeError.
"""

from typing import Any, Dict, List, Optional, Sequence

from core.errors import OutOfRangeError
from core.grading_config import ScaleBand
from core.numeric import to_decimal


def _descending(scale: Sequence[ScaleBand]) -> List[ScaleBand]:
    return sorted(scale, key=lambda b: b.min_score, reverse=True)


def classify(score: Any, scale: Sequence[ScaleBand], key: Optional[Dict[str, Any]] = None) -> ScaleBand:
    """Return the scale band for a score."""
    value = to_decimal(score)
    if value is None:
        raise OutOfRangeError(f"Score {score!r} is not numeric", key)
    if not scale:
        raise OutOfRangeError("Grading scale is empty", key)

    bands = _descending(scale)
    top = max(b.max_score for b in bands)
    if value > top:
        raise OutOfRangeError(f"Score {value} is above the scale maximum {top}", key)

    for band in bands:
        if value >= band.min_score:
            return band

    raise OutOfRangeError(
        f"Score {value} is below the scale minimum {bands[-1].min_score}", key
    )


def classify_level(score: Any, scale: Sequence[ScaleBand], key: Optional[Dict[str, Any]] = None) -> str:
    """Return only the level code, e.g. 'ALTO'."""
    return classify(score, scale, key).level


def scale_thresholds(scale: Sequence[ScaleBand]) -> List[Dict[str, Any]]:
    """Return the full scale (highest first) for legends and API reference."""
    return [
        {
            "level": b.level,
            "label": b.display_label,
            "min": float(b.min_score),
            "max": float(b.max_score),
        }
        for b in _descending(scale)
    ]
