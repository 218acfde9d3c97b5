"""
The 5-point letter-grade scale.

Score entry, moderation and standing calculation all read grades and points
from `GRADE_SCALE`, so a band only ever changes here.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from exams_cli.errors import ValidationError
from exams_cli.models import GradeType

CA_MAX = 30
EXAM_MAX = 70
TOTAL_MAX = 100


@dataclass(frozen=True)
class GradeBand:
    grade: GradeType
    points: int
    floor: int
    label: str


# Highest floor first
GRADE_SCALE: Tuple[GradeBand, ...] = (
    GradeBand("A", 5, 70, "Excellent"),
    GradeBand("B", 4, 60, "Very Good"),
    GradeBand("C", 3, 50, "Good"),
    GradeBand("D", 2, 45, "Fair"),
    GradeBand("E", 1, 40, "Pass"),
    GradeBand("F", 0, 0, "Fail"),
)

_BY_GRADE: Dict[str, GradeBand] = {band.grade: band for band in GRADE_SCALE}

GRADE_POINTS: Dict[str, int] = {band.grade: band.points for band in GRADE_SCALE}


def grade_band(grade: str) -> Optional[GradeBand]:
    return _BY_GRADE.get((grade or "").strip().upper())


def get_grade_points(grade: str) -> Optional[int]:
    """Points for a letter grade, or None when the symbol is off the scale."""
    band = grade_band(grade)
    return band.points if band else None


def grade_from_score(score: Optional[float]) -> GradeType:
    """
    Map a grand total to its letter grade.

    Floors are inclusive: 70 A, 60 B, 50 C, 45 D, 40 E.
    Anything below 40, and a missing score, is an F.
    """
    value = float(score or 0)
    for band in GRADE_SCALE:
        if value >= band.floor:
            return band.grade
    return "F"


def is_passing_grade(grade: str) -> bool:
    """A-E earn credit; F does not."""
    points = get_grade_points(grade)
    return points is not None and points > 0


def is_failing_grade(grade: str) -> bool:
    return (grade or "").strip().upper() == "F"


def normalize_grade_symbol(grade: str) -> GradeType:
    """Upper-cased grade symbol; ValidationError when it is not on the scale."""
    band = grade_band(grade)
    if band is None:
        raise ValidationError(f"Invalid grade symbol: {(grade or '').strip() or '<empty>'}")
    return band.grade


def _clamp(value: float, upper: float) -> float:
    return min(upper, max(0.0, float(value)))


def compute_grand_total(
    ca: Optional[float] = None,
    exam: Optional[float] = None,
    grand_total: Optional[float] = None,
) -> Tuple[Optional[float], Optional[float], float]:
    """
    Resolve the stored score parts and the grand total.

    A grand total on its own is trusted (clamped to 0-100) and the parts stay
    empty. Otherwise CA is clamped to 0-30 and exam to 0-70, missing parts
    count as zero, and the total is their sum.

    Returns:
        Tuple of (ca, exam, grand_total)
    """
    if grand_total is not None and ca is None and exam is None:
        return None, None, _clamp(grand_total, TOTAL_MAX)

    ca_value = _clamp(ca or 0, CA_MAX)
    exam_value = _clamp(exam or 0, EXAM_MAX)
    return ca_value, exam_value, min(TOTAL_MAX, ca_value + exam_value)
