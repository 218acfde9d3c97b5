from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from exams_cli.models import AcademicStanding
from exams_cli.standing.calculator import ZERO_SNAPSHOT, CumulativeSnapshot
from exams_cli.standing.sessions import session_year


def find_previous_standing(
    db: Session, student_id: int, session: str, semester: int
) -> Optional[AcademicStanding]:
    """Latest standing of the student strictly before (session, semester)."""
    year = session_year(session)
    stmt = (
        select(AcademicStanding)
        .where(
            AcademicStanding.student_id == student_id,
            or_(
                AcademicStanding.session_year < year,
                and_(
                    AcademicStanding.session_year == year,
                    AcademicStanding.semester < semester,
                ),
            ),
        )
        .order_by(
            AcademicStanding.session_year.desc(),
            AcademicStanding.semester.desc(),
            AcademicStanding.level.desc(),
        )
        .limit(1)
    )
    return db.scalars(stmt).first()


def resolve_previous_snapshot(
    db: Session, student_id: int, session: str, semester: int
) -> CumulativeSnapshot:
    previous = find_previous_standing(db, student_id, session, semester)
    if previous is None:
        return ZERO_SNAPSHOT
    return CumulativeSnapshot(
        ccc=previous.ccc, cce=previous.cce, cpe=previous.cpe, cgpa=previous.cgpa
    )
