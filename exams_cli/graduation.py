import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from exams_cli.models import AcademicStanding
from exams_cli.standing.history import outstanding_failures
from exams_cli.standing.sessions import SessionKey, validate_semester
from exams_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

GRADUATING_LEVEL = 400
PREVIOUS_LEVELS = (100, 200, 300)
MIN_CCE_BY_ENTRY_MODE = {"UE": 135, "DE": 86}


@dataclass(frozen=True)
class FailedCourse:
    code: str
    unit: int
    score: Optional[float]
    grade: str
    session: str
    semester: int


@dataclass
class GraduatingStudent:
    student_id: int
    reg_no: str
    full_name: str
    entry_mode: str
    level: str
    status: str
    tcc: float
    tce: float
    tpe: float
    gpa: float
    ccc: float
    cce: float
    cpe: float
    cgpa: float
    min_cce: int
    cgpa_by_level: Dict[int, float] = field(default_factory=dict)
    failed_courses: List[FailedCourse] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        return not self.reasons


@dataclass
class GraduatingList:
    session: str
    semester: int
    students: List[GraduatingStudent] = field(default_factory=list)

    @property
    def eligible_count(self) -> int:
        return sum(1 for s in self.students if s.eligible)

    @property
    def ineligible_count(self) -> int:
        return len(self.students) - self.eligible_count


def minimum_cce(entry_mode: str) -> int:
    """Direct entry students need fewer earned units than regular entrants."""
    return MIN_CCE_BY_ENTRY_MODE.get((entry_mode or "UE").upper(), MIN_CCE_BY_ENTRY_MODE["UE"])


def reg_no_sort_key(reg_no: str, entry_mode: str = "") -> Tuple[int, str, str]:
    """Sort by the serial number in e.g. "BCH/0123/UE", then the entry suffix."""
    parts = (reg_no or "").split("/")
    digits = re.sub(r"\D", "", parts[1]) if len(parts) > 1 else ""
    number = int(digits) if digits else 10**9
    return number, entry_mode or "", reg_no or ""


def _latest_cgpa_by_level(
    db: Session, student_ids: List[int]
) -> Dict[Tuple[int, int], float]:
    rows = db.execute(
        select(
            AcademicStanding.student_id,
            AcademicStanding.level,
            AcademicStanding.cgpa,
        )
        .where(
            AcademicStanding.student_id.in_(student_ids),
            AcademicStanding.level.in_(PREVIOUS_LEVELS),
        )
        .order_by(
            AcademicStanding.level,
            AcademicStanding.session_year.desc(),
            AcademicStanding.semester.desc(),
        )
    ).all()

    latest: Dict[Tuple[int, int], float] = {}
    for row in rows:
        latest.setdefault((row.student_id, row.level), row.cgpa or 0.0)
    return latest


def get_graduating_list(
    db: Session, session: str, semester: Union[int, str]
) -> GraduatingList:
    """
    Final-year standings of a term, each checked against the graduation rules:
    still at 400 level, no course whose latest attempt is an F, and enough
    earned units for the student's entry mode.
    """
    key = SessionKey.parse(session)
    semester = validate_semester(semester)
    listing = GraduatingList(session=key.label, semester=semester)

    standings = db.scalars(
        select(AcademicStanding)
        .options(joinedload(AcademicStanding.student))
        .where(
            AcademicStanding.session_year == key.start_year,
            AcademicStanding.semester == semester,
            AcademicStanding.level == GRADUATING_LEVEL,
        )
    ).all()
    if not standings:
        return listing

    student_ids = [s.student_id for s in standings]
    failures = outstanding_failures(db, student_ids)
    cgpas = _latest_cgpa_by_level(db, student_ids)

    for standing in standings:
        student = standing.student
        min_cce = minimum_cce(student.entry_mode)
        failed = sorted(
            (
                FailedCourse(
                    code=row.code,
                    unit=row.unit,
                    score=row.grand_total,
                    grade=row.grade,
                    session=row.session,
                    semester=row.semester,
                )
                for row in failures.get(student.id, [])
            ),
            key=lambda c: c.code,
        )

        reasons = []
        if str(student.level).upper().rstrip("L") != str(GRADUATING_LEVEL):
            reasons.append("Not at 400 level")
        if failed:
            reasons.append("Outstanding failed course(s)")
        if (standing.cce or 0) < min_cce:
            reasons.append(
                f"CCE below minimum ({standing.cce or 0:g} < {min_cce} for {student.entry_mode})"
            )

        listing.students.append(
            GraduatingStudent(
                student_id=student.id,
                reg_no=student.reg_no,
                full_name=student.full_name,
                entry_mode=student.entry_mode,
                level=student.level,
                status=student.status,
                tcc=standing.tcc,
                tce=standing.tce,
                tpe=standing.tpe,
                gpa=standing.gpa,
                ccc=standing.ccc,
                cce=standing.cce,
                cpe=standing.cpe,
                cgpa=standing.cgpa,
                min_cce=min_cce,
                cgpa_by_level={
                    level: cgpas.get((student.id, level), 0.0) for level in PREVIOUS_LEVELS
                },
                failed_courses=failed,
                reasons=reasons,
            )
        )

    listing.students.sort(key=lambda s: reg_no_sort_key(s.reg_no, s.entry_mode))
    logger.info(
        f"Graduating list for {key.label} semester {semester}: "
        f"{listing.eligible_count} eligible of {len(listing.students)}"
    )
    return listing
