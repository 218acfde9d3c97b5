from typing import Iterable, List, Optional, Set, Union

import click
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exams_cli.errors import NotFoundError
from exams_cli.institutions import InstitutionDirectory, default_directory
from exams_cli.models import AcademicStanding, CourseRegistration, Result, Student
from exams_cli.standing import StandingKey
from exams_cli.standing.recompute import recompute_and_commit
from exams_cli.standing.sessions import SessionKey, validate_level, validate_semester
from exams_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


def term_standing_keys(
    db: Session,
    session: str,
    semester: Union[int, str],
    level: Optional[Union[int, str]] = None,
    student_ids: Optional[Iterable[int]] = None,
) -> List[StandingKey]:
    """
    Every standing key a term could have: anything registered, scored, or
    already holding a standing (so stale standings get removed).
    """
    key = SessionKey.parse(session)
    semester = validate_semester(semester)
    level_value = validate_level(level) if level is not None else None
    ids = set(student_ids) if student_ids is not None else None

    keys: Set[StandingKey] = set()
    for model in (CourseRegistration, Result, AcademicStanding):
        stmt = select(model.student_id, model.level).where(
            model.session_year == key.start_year, model.semester == semester
        )
        if level_value is not None:
            stmt = stmt.where(model.level == level_value)
        if ids is not None:
            stmt = stmt.where(model.student_id.in_(ids))
        for row in db.execute(stmt.distinct()):
            keys.add(StandingKey(row.student_id, key.label, semester, row.level))
    return sorted(keys)


def _student_ids_for(db: Session, reg_nos: Iterable[str]) -> List[int]:
    wanted = {r.strip().upper() for r in reg_nos if r and r.strip()}
    rows = db.execute(
        select(Student.id, Student.reg_no).where(Student.reg_no.in_(wanted))
    ).all()
    missing = wanted - {row.reg_no for row in rows}
    if missing:
        raise NotFoundError(f"Unknown registration number(s): {', '.join(sorted(missing))}")
    return [row.id for row in rows]


def recompute_term_standings(
    db: Session,
    session: str,
    semester: Union[int, str],
    level: Optional[Union[int, str]] = None,
    reg_nos: Optional[Iterable[str]] = None,
    directory: InstitutionDirectory = default_directory,
) -> int:
    """Rebuild the standings of a term, optionally for some students only."""
    student_ids = _student_ids_for(db, reg_nos) if reg_nos else None
    keys = term_standing_keys(db, session, semester, level, student_ids)

    if not keys:
        click.secho("No registrations, results or standings found for that term.", fg="yellow")
        return 0

    click.echo(f"Recomputing {len(keys)} standing(s)...")
    try:
        outcome = recompute_and_commit(db, keys, directory)
    except SQLAlchemyError as e:
        click.secho(f"Recompute failed and was rolled back: {str(e)}", fg="red")
        raise

    kept = sum(1 for standing in outcome.values() if standing is not None)
    removed = len(outcome) - kept
    click.secho(f"Recomputed {kept} standing(s)", fg="green")
    if removed:
        click.secho(f"Removed {removed} standing(s) with nothing attempted", fg="yellow")
    logger.info(
        f"Recomputed term {session} semester {semester}: {kept} kept, {removed} removed"
    )
    return kept
