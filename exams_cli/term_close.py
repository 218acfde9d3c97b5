"""
Closing an academic session.

A session can only be closed once every standing recorded for it carries the
dean's approval. Closing promotes the 100-300 level cohort by one level and
settles the final-year cohort as graduated, or as extra year when any
course's latest attempt is still an F. Everything happens in one database
transaction: either the whole cohort moves or nobody does.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from exams_cli.academic_sessions import (
    SessionRegistry,
    default_registry,
    empty_promotion_stats,
    get_session,
)
from exams_cli.db.config import CLOSE_BATCH_SIZE
from exams_cli.errors import (
    ConsistencyError,
    ExamsError,
    TransactionFailure,
    ValidationError,
)
from exams_cli.models import AcademicSession, AcademicStanding, StandingApproval, Student
from exams_cli.standing.history import chunked, outstanding_failures
from exams_cli.standing.sessions import SEMESTERS, SessionKey
from exams_cli.utils.logging_config import get_audit_logger, get_logger

logger = get_logger(__name__)

FINAL_YEAR_LEVEL = "400"

# Highest level first so a student promoted in one step is not picked up
# again by the next.
PROMOTION_STEPS = (("300", "400"), ("200", "300"), ("100", "200"))


@dataclass
class SemesterReadiness:
    semester: int
    total: int = 0
    approved: int = 0

    @property
    def pending(self) -> int:
        return self.total - self.approved


@dataclass
class SessionReadiness:
    session: str
    semesters: Dict[int, SemesterReadiness] = field(default_factory=dict)
    final_year_standings: int = 0
    final_year_students: int = 0

    @property
    def total(self) -> int:
        return sum(s.total for s in self.semesters.values())

    @property
    def approved(self) -> int:
        return sum(s.approved for s in self.semesters.values())

    @property
    def pending(self) -> int:
        return self.total - self.approved

    @property
    def can_close(self) -> bool:
        return self.total > 0 and self.pending == 0

    @property
    def blocking_reasons(self) -> List[str]:
        if self.total == 0:
            return [f"No academic standings have been recorded for {self.session}"]
        return [
            f"Semester {s.semester}: {s.pending} pending final approval from the Dean"
            for s in sorted(self.semesters.values(), key=lambda s: s.semester)
            if s.pending
        ]

    def as_dict(self) -> Dict:
        return {
            "session": self.session,
            "total": self.total,
            "approved": self.approved,
            "pending": self.pending,
            "semesters": {
                s.semester: {"total": s.total, "approved": s.approved, "pending": s.pending}
                for s in self.semesters.values()
            },
            "final_year_standings": self.final_year_standings,
            "final_year_students": self.final_year_students,
            "can_close": self.can_close,
            "blocking_reasons": self.blocking_reasons,
        }


def _level_values(level: str) -> List[str]:
    return [level, f"{level}L"]


def get_session_readiness(
    db: Session, session: Union[str, AcademicSession]
) -> SessionReadiness:
    """Count dean-approved standings of a session, per semester."""
    title = session.title if isinstance(session, AcademicSession) else session
    key = SessionKey.parse(title)

    dean = aliased(StandingApproval)
    rows = db.execute(
        select(
            AcademicStanding.semester,
            func.count(AcademicStanding.id).label("total"),
            func.count(dean.id).label("approved"),
        )
        .outerjoin(
            dean,
            (dean.standing_id == AcademicStanding.id)
            & (dean.stage == "dean")
            & dean.approved.is_(True),
        )
        .where(AcademicStanding.session_year == key.start_year)
        .group_by(AcademicStanding.semester)
    ).all()

    readiness = SessionReadiness(session=key.label)
    for semester in SEMESTERS:
        readiness.semesters[semester] = SemesterReadiness(semester)
    for row in rows:
        readiness.semesters[row.semester] = SemesterReadiness(
            row.semester, total=row.total, approved=row.approved
        )

    readiness.final_year_standings = (
        db.scalar(
            select(func.count(AcademicStanding.id)).where(
                AcademicStanding.session_year == key.start_year,
                AcademicStanding.level == int(FINAL_YEAR_LEVEL),
            )
        )
        or 0
    )
    readiness.final_year_students = (
        db.scalar(
            select(func.count(Student.id)).where(
                Student.level.in_(_level_values(FINAL_YEAR_LEVEL)),
                Student.status != "graduated",
            )
        )
        or 0
    )
    return readiness


def _bulk_update_students(
    db: Session, student_ids: Sequence[int], batch_size: int, **values
) -> int:
    updated = 0
    for chunk in chunked(list(student_ids), batch_size):
        result = db.execute(
            update(Student)
            .where(Student.id.in_(chunk))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        updated += result.rowcount
    return updated


def _active_ids_at_level(db: Session, level: str) -> List[int]:
    return list(
        db.scalars(
            select(Student.id).where(
                Student.level.in_(_level_values(level)),
                Student.status != "graduated",
            )
        ).all()
    )


def _parse_end_date(value: Union[date, str, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid end date {value!r}, expected YYYY-MM-DD")


def close_session(
    db: Session,
    session_id: Union[int, str],
    end_date: Union[date, str, None] = None,
    batch_size: int = CLOSE_BATCH_SIZE,
    registry: SessionRegistry = default_registry,
) -> AcademicSession:
    """
    Close a session and move the cohort on.

    Raises:
        ConsistencyError: session already completed, or standings still
            waiting for approval (the reasons list says which)
        TransactionFailure: a database error aborted the close; nothing
            was written
    """
    if batch_size <= 0:
        raise ValidationError("batch_size must be positive")
    closing_date = _parse_end_date(end_date)

    try:
        row = get_session(db, session_id)
        db.refresh(row, with_for_update=True)

        if row.status == "completed":
            raise ConsistencyError(
                f"Session {row.title} has already been closed",
                [f"{row.title} was closed on {row.closed_at or row.end_date}"],
            )

        readiness = get_session_readiness(db, row)
        if not readiness.can_close:
            raise ConsistencyError(
                f"Session {row.title} cannot be closed yet", readiness.blocking_reasons
            )

        final_year_ids = _active_ids_at_level(db, FINAL_YEAR_LEVEL)

        stats = empty_promotion_stats()
        for from_level, to_level in PROMOTION_STEPS:
            ids = _active_ids_at_level(db, from_level)
            moved = _bulk_update_students(db, ids, batch_size, level=to_level)
            stats["promoted_breakdown"][f"{from_level}_to_{to_level}"] = moved
            logger.info(f"Promoted {moved} student(s) from {from_level} to {to_level}")
        stats["promoted"] = sum(stats["promoted_breakdown"].values())

        failing = outstanding_failures(db, final_year_ids, chunk_size=batch_size)
        extra_year = [i for i in final_year_ids if i in failing]
        graduates = [i for i in final_year_ids if i not in failing]

        stats["graduated"] = _bulk_update_students(
            db, graduates, batch_size, status="graduated"
        )
        stats["extra_year"] = _bulk_update_students(
            db, extra_year, batch_size, status="extraYear"
        )
        stats["total_processed"] = stats["promoted"] + len(final_year_ids)

        row.status = "completed"
        row.is_current = False
        row.closed_at = datetime.utcnow()
        row.end_date = closing_date or row.end_date or date.today()
        row.promotion_stats = stats
        db.commit()
    except ExamsError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Closing session {session_id} failed, rolled back: {str(e)}")
        raise TransactionFailure(f"Could not close session {session_id}: {e}") from e
    finally:
        registry.invalidate()

    message = (
        f"Closed session {row.title}: promoted {stats['promoted']}, "
        f"graduated {stats['graduated']}, extra year {stats['extra_year']}"
    )
    logger.info(message)
    get_audit_logger().info(message)
    return row
