"""
Term and cumulative standing calculation.

Pure functions only: given the attempted courses of a term and the
cumulative snapshot that precedes it, produce TCC/TCE/TPE/GPA for the term
and CCC/CCE/CPE/CGPA cumulatively.
"""

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional

from exams_cli.grading import GRADE_POINTS, is_passing_grade


@dataclass(frozen=True, order=True)
class AttemptedCourse:
    unit: float
    grade: str


@dataclass(frozen=True)
class CumulativeSnapshot:
    """Cumulative totals a term's standing is seeded from."""

    ccc: float = 0
    cce: float = 0
    cpe: float = 0
    cgpa: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


ZERO_SNAPSHOT = CumulativeSnapshot()


@dataclass(frozen=True)
class StandingMetrics:
    tcc: float
    tce: float
    tpe: float
    gpa: float
    ccc: float
    cce: float
    cpe: float
    cgpa: float

    def cumulative(self) -> CumulativeSnapshot:
        return CumulativeSnapshot(
            ccc=self.ccc, cce=self.cce, cpe=self.cpe, cgpa=self.cgpa
        )

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def round_half_up(value: float, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def average(points: float, credits: float) -> float:
    return points / credits if credits > 0 else 0.0


def calculate_standing(
    courses: Iterable[AttemptedCourse],
    previous: Optional[CumulativeSnapshot] = None,
) -> StandingMetrics:
    """
    Calculate current-term and cumulative standing.

    Courses with a non-positive unit or a grade off the scale are ignored.
    F carries credits and earns no points; every other grade also counts
    towards credits earned. GPA and CGPA are rounded to two places, the
    totals are not rounded.

    Args:
        courses: Attempted (unit, grade) pairs for the term
        previous: Cumulative snapshot of the latest earlier term, zero if None

    Returns:
        StandingMetrics for the term
    """
    previous = previous or ZERO_SNAPSHOT

    tcc = 0
    tce = 0
    tpe = 0
    # Sorted so float sums do not depend on the caller's ordering
    for course in sorted(courses, key=lambda c: (c.unit or 0, c.grade or "")):
        grade = (course.grade or "").strip().upper()
        point = GRADE_POINTS.get(grade)
        unit = course.unit or 0
        if point is None or unit <= 0:
            continue

        tcc += unit
        tpe += unit * point
        if is_passing_grade(grade):
            tce += unit

    ccc = tcc + (previous.ccc or 0)
    cce = tce + (previous.cce or 0)
    cpe = tpe + (previous.cpe or 0)

    return StandingMetrics(
        tcc=tcc,
        tce=tce,
        tpe=tpe,
        gpa=round_half_up(average(tpe, tcc)),
        ccc=ccc,
        cce=cce,
        cpe=cpe,
        cgpa=round_half_up(average(cpe, ccc)),
    )
