"""
Academic session lifecycle: opening a new session and looking sessions up.

Only one session is current at a time. Reads go through a small TTL cache
that is invalidated whenever a session is created or closed.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exams_cli.cache import TTLCache
from exams_cli.errors import NotFoundError, TransactionFailure, ValidationError
from exams_cli.models import AcademicSession, Lecturer
from exams_cli.standing.sessions import SessionKey
from exams_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

LIST_TTL_SECONDS = 300
CURRENT_TTL_SECONDS = 60

OFFICER_ROLES = ("dean", "hod", "exam_officer")

# cached "no current session" is a valid entry
_UNSET = object()


def empty_promotion_stats() -> Dict[str, Any]:
    return {
        "promoted": 0,
        "promoted_breakdown": {"100_to_200": 0, "200_to_300": 0, "300_to_400": 0},
        "graduated": 0,
        "extra_year": 0,
        "total_processed": 0,
    }


@dataclass(frozen=True)
class SessionSummary:
    """Detached view of a session, safe to keep in the cache."""

    id: int
    title: str
    session_year: int
    status: str
    is_current: bool
    start_date: date
    end_date: Optional[date]
    closed_at: Optional[datetime]
    principal_officers: Dict[str, Any]
    promotion_stats: Dict[str, Any]

    @classmethod
    def from_model(cls, row: AcademicSession) -> "SessionSummary":
        return cls(
            id=row.id,
            title=row.title,
            session_year=row.session_year,
            status=row.status,
            is_current=row.is_current,
            start_date=row.start_date,
            end_date=row.end_date,
            closed_at=row.closed_at,
            principal_officers=dict(row.principal_officers or {}),
            promotion_stats=dict(row.promotion_stats or {}),
        )


class SessionRegistry:
    """Cached reads of academic sessions."""

    LIST_KEY = "sessions"
    CURRENT_KEY = "current"

    def __init__(
        self,
        list_ttl_seconds: float = LIST_TTL_SECONDS,
        current_ttl_seconds: float = CURRENT_TTL_SECONDS,
    ):
        self.current_ttl_seconds = current_ttl_seconds
        self._cache: TTLCache[Any] = TTLCache(list_ttl_seconds, max_entries=16)

    def list_sessions(self, db: Session) -> List[SessionSummary]:
        def load() -> List[SessionSummary]:
            rows = db.scalars(
                select(AcademicSession).order_by(
                    AcademicSession.session_year.desc(), AcademicSession.id.desc()
                )
            ).all()
            return [SessionSummary.from_model(r) for r in rows]

        return self._cache.get_or_load(self.LIST_KEY, load)

    def current_session(self, db: Session) -> Optional[SessionSummary]:
        cached = self._cache.get(self.CURRENT_KEY, _UNSET)
        if cached is not _UNSET:
            return cached

        row = db.scalars(
            select(AcademicSession)
            .where(AcademicSession.is_current.is_(True))
            .order_by(AcademicSession.id.desc())
        ).first()
        summary = SessionSummary.from_model(row) if row else None
        self._cache.set(self.CURRENT_KEY, summary, ttl_seconds=self.current_ttl_seconds)
        return summary

    def invalidate(self) -> None:
        self._cache.clear()


default_registry = SessionRegistry()


def list_sessions(
    db: Session, registry: SessionRegistry = default_registry
) -> List[SessionSummary]:
    return registry.list_sessions(db)


def get_current_session(
    db: Session, registry: SessionRegistry = default_registry
) -> Optional[SessionSummary]:
    return registry.current_session(db)


def get_session(db: Session, session: Union[int, str]) -> AcademicSession:
    """Fetch a session by id or by title such as "2023/2024"."""
    if isinstance(session, int) or str(session).isdigit():
        row = db.get(AcademicSession, int(session))
    else:
        title = SessionKey.parse(session).label
        row = db.scalars(
            select(AcademicSession)
            .where(AcademicSession.title == title)
            .order_by(AcademicSession.id.desc())
        ).first()
    if row is None:
        raise NotFoundError(f"Academic session {session!r} not found")
    return row


def _officer_snapshot(lecturer: Lecturer) -> Dict[str, Any]:
    return {
        "id": lecturer.id,
        "staff_no": lecturer.staff_no,
        "name": lecturer.full_name,
        "title": lecturer.title,
        "rank": lecturer.rank,
        "department_id": lecturer.department_id,
    }


def _parse_start_date(value: Union[date, str, None]) -> date:
    if value is None or value == "":
        return date.today()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid start date {value!r}, expected YYYY-MM-DD")


def create_session(
    db: Session,
    title: str,
    start_date: Union[date, str, None],
    dean: str,
    hod: str,
    exam_officer: str,
    registry: SessionRegistry = default_registry,
) -> AcademicSession:
    """
    Open a new academic session and make it the only current one.

    `dean`, `hod` and `exam_officer` are staff numbers. Their details are
    copied onto the session so later staff changes do not rewrite history.
    """
    key = SessionKey.parse(title)
    start = _parse_start_date(start_date)

    staff_numbers = {"dean": dean, "hod": hod, "exam_officer": exam_officer}
    blank = [role for role, staff_no in staff_numbers.items() if not (staff_no or "").strip()]
    if blank:
        raise ValidationError(f"Staff number required for: {', '.join(blank)}")

    wanted = {s.strip() for s in staff_numbers.values()}
    lecturers = {
        lec.staff_no: lec
        for lec in db.scalars(select(Lecturer).where(Lecturer.staff_no.in_(wanted)))
    }
    missing = sorted(wanted - lecturers.keys())
    if missing:
        raise NotFoundError(f"Lecturer(s) not found: {', '.join(missing)}")

    officers = {role: lecturers[staff_numbers[role].strip()] for role in OFFICER_ROLES}

    try:
        db.execute(
            update(AcademicSession)
            .where(AcademicSession.is_current.is_(True))
            .values(is_current=False)
        )
        new_session = AcademicSession(
            title=key.label,
            session_year=key.start_year,
            start_date=start,
            status="active",
            is_current=True,
            dean_id=officers["dean"].id,
            hod_id=officers["hod"].id,
            exam_officer_id=officers["exam_officer"].id,
            principal_officers={
                role: _officer_snapshot(lec) for role, lec in officers.items()
            },
            promotion_stats=empty_promotion_stats(),
        )
        db.add(new_session)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create session {key.label}: {str(e)}")
        raise TransactionFailure(f"Could not create session {key.label}") from e
    finally:
        registry.invalidate()

    logger.info(f"Opened academic session {new_session.title} (id {new_session.id})")
    return new_session
