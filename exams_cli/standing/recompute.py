from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from exams_cli.cache import KeyedLocks
from exams_cli.institutions import InstitutionDirectory, default_directory
from exams_cli.models import APPROVAL_STAGES, AcademicStanding, StandingApproval
from exams_cli.standing import StandingKey
from exams_cli.standing.assembler import assemble_attempted_courses
from exams_cli.standing.calculator import (
    CumulativeSnapshot,
    StandingMetrics,
    calculate_standing,
)
from exams_cli.standing.resolver import resolve_previous_snapshot
from exams_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

# Fields owned by recompute. Approval sub-records are never written here.
METRIC_FIELDS = ("tcc", "tce", "tpe", "gpa", "ccc", "cce", "cpe", "cgpa")
PREVIOUS_FIELDS = ("previous_ccc", "previous_cce", "previous_cpe", "previous_cgpa")


# Keyed by student id: a recompute of one key also rewrites that student's
# later standings.
_standing_locks = KeyedLocks()


def _key_clause(key: StandingKey):
    return (
        AcademicStanding.student_id == key.student_id,
        AcademicStanding.session_year == key.session_year,
        AcademicStanding.semester == key.semester,
        AcademicStanding.level == key.level,
    )


def _standing_values(
    metrics: StandingMetrics,
    previous: CumulativeSnapshot,
    department_id: Optional[int],
    college_id: Optional[int],
) -> Dict[str, Any]:
    values: Dict[str, Any] = metrics.as_dict()
    values.update(
        previous_ccc=previous.ccc,
        previous_cce=previous.cce,
        previous_cpe=previous.cpe,
        previous_cgpa=previous.cgpa,
        department_id=department_id,
        college_id=college_id,
    )
    return values


def _delete_standing(db: Session, key: StandingKey) -> bool:
    standing_ids = select(AcademicStanding.id).where(*_key_clause(key))
    db.execute(
        delete(StandingApproval).where(StandingApproval.standing_id.in_(standing_ids))
    )
    result = db.execute(delete(AcademicStanding).where(*_key_clause(key)))
    return bool(result.rowcount)


def _update_standing(
    db: Session, standing: AcademicStanding, values: Dict[str, Any]
) -> AcademicStanding:
    changed = {k: v for k, v in values.items() if getattr(standing, k) != v}
    if not changed:
        return standing
    changed["last_updated"] = datetime.utcnow()
    db.execute(
        update(AcademicStanding)
        .where(AcademicStanding.id == standing.id)
        .values(**changed)
    )
    return standing


def _find_standing(db: Session, key: StandingKey) -> Optional[AcademicStanding]:
    return db.scalars(select(AcademicStanding).where(*_key_clause(key))).first()


def _upsert_standing(
    db: Session, key: StandingKey, values: Dict[str, Any]
) -> AcademicStanding:
    existing = _find_standing(db, key)
    if existing is not None:
        return _update_standing(db, existing, values)

    try:
        with db.begin_nested():
            standing = AcademicStanding(
                student_id=key.student_id,
                session=key.session,
                session_year=key.session_year,
                semester=key.semester,
                level=key.level,
                last_updated=datetime.utcnow(),
                **values,
            )
            standing.approvals = [StandingApproval(stage=s) for s in APPROVAL_STAGES]
            db.add(standing)
        return standing
    except IntegrityError:
        existing = _find_standing(db, key)
        if existing is None:
            raise
        logger.info(f"Standing for {key} created concurrently, updating instead")
        return _update_standing(db, existing, values)


def recompute_standing(
    db: Session,
    key: StandingKey,
    directory: InstitutionDirectory = default_directory,
) -> Optional[AcademicStanding]:
    """
    Rebuild the standing for one (student, session, semester, level) from
    registrations and results.

    Upserts the standing when the student attempted anything that term and
    deletes it otherwise. Safe to re-run at any time; the caller commits.
    Use `recompute_and_commit` when other writers may touch the same key.

    Returns:
        The standing, or None when it was removed
    """
    with _standing_locks.hold(key.student_id):
        try:
            with db.begin_nested():
                # Row lock lasts until the caller's commit where supported
                db.execute(
                    select(AcademicStanding.id)
                    .where(*_key_clause(key))
                    .with_for_update()
                )
                attempted = assemble_attempted_courses(db, key)
                if not attempted:
                    if _delete_standing(db, key):
                        logger.info(f"Removed standing for {key}: nothing attempted")
                    return None

                previous = resolve_previous_snapshot(
                    db, key.student_id, key.session, key.semester
                )
                metrics = calculate_standing(attempted, previous)
                institution = directory.for_student(db, key.student_id)
                values = _standing_values(
                    metrics,
                    previous,
                    institution.department_id,
                    institution.college_id,
                )
                standing = _upsert_standing(db, key, values)
        except SQLAlchemyError as e:
            logger.error(f"Recompute failed for {key}: {str(e)}")
            raise

    logger.debug(
        f"Recomputed {key}: GPA={metrics.gpa} CGPA={metrics.cgpa} "
        f"({len(attempted)} courses)"
    )
    return standing


def _chronological(key: StandingKey):
    return (key.session_year, key.semester, key.level, key.student_id)


def later_standing_keys(db: Session, key: StandingKey) -> List[StandingKey]:
    """Keys of the student's existing standings after key's term."""
    year = key.session_year
    rows = db.execute(
        select(
            AcademicStanding.session,
            AcademicStanding.session_year,
            AcademicStanding.semester,
            AcademicStanding.level,
        ).where(AcademicStanding.student_id == key.student_id)
    ).all()
    return [
        StandingKey(key.student_id, row.session, row.semester, row.level)
        for row in rows
        if (row.session_year, row.semester) > (year, key.semester)
    ]


def with_later_standings(db: Session, keys: Iterable[StandingKey]) -> Set[StandingKey]:
    grouped = set(keys)
    for key in list(grouped):
        grouped.update(later_standing_keys(db, key))
    return grouped


def recompute_many(
    db: Session,
    keys: Iterable[StandingKey],
    directory: InstitutionDirectory = default_directory,
    cascade: bool = True,
) -> Dict[StandingKey, Optional[AcademicStanding]]:
    """
    Recompute once per distinct key, earliest term first.

    With cascade, each student's later standings are recomputed too so their
    previous snapshots keep matching the terms before them.
    """
    grouped = with_later_standings(db, keys) if cascade else set(keys)
    return {
        key: recompute_standing(db, key, directory)
        for key in sorted(grouped, key=_chronological)
    }


def recompute_and_commit(
    db: Session,
    keys: Iterable[StandingKey],
    directory: InstitutionDirectory = default_directory,
) -> Dict[StandingKey, Optional[AcademicStanding]]:
    """
    Recompute `keys` and their later standings, then commit.

    The students' locks are taken before the first read and released only
    after the commit returns, so two writers of one key never interleave.
    Rolls back and re-raises on a database error.
    """
    keys = list(keys)
    with _standing_locks.hold_many(key.student_id for key in keys):
        try:
            outcome = recompute_many(db, keys, directory)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
    return outcome
