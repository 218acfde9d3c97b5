from datetime import date
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from exams_cli.access import Actor, ensure_can_access_department
from exams_cli.errors import NotFoundError, ValidationError
from exams_cli.grading import compute_grand_total, grade_from_score, normalize_grade_symbol
from exams_cli.institutions import InstitutionDirectory, default_directory
from exams_cli.models import AcademicStanding, Course, Lecturer, Result, Student
from exams_cli.standing import StandingKey
from exams_cli.standing.recompute import recompute_and_commit
from exams_cli.standing.sessions import session_year, validate_level, validate_semester
from exams_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

AUTO_GRADE = "AUTO"


def standing_key_for(result: Result) -> StandingKey:
    return StandingKey(result.student_id, result.session, result.semester, result.level)


def refresh_standings(
    db: Session,
    keys: Iterable[StandingKey],
    directory: InstitutionDirectory = default_directory,
) -> Dict[StandingKey, Optional[AcademicStanding]]:
    """
    Recompute the standings touched by a score mutation that has already been
    committed. A failure leaves the score in place and can be retried by
    recomputing the same keys.
    """
    keys = set(keys)
    try:
        return recompute_and_commit(db, keys, directory)
    except SQLAlchemyError:
        logger.error(
            f"Standing recompute failed for {len(keys)} key(s); "
            f"re-run recompute for: {', '.join(str(k) for k in sorted(keys))}"
        )
        raise


def _parse_date(value: Union[date, str, None]) -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError("exam date is required")
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid exam date {value!r}, expected YYYY-MM-DD")


def get_result(db: Session, result_id: int) -> Result:
    result = db.get(Result, result_id)
    if result is None:
        raise NotFoundError(f"Result {result_id} not found")
    return result


def _ensure_course_scope(db: Session, actor: Optional[Actor], course_id: int) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFoundError(f"Course {course_id} not found")
    ensure_can_access_department(actor, course.department_id)
    return course


def create_result(
    db: Session,
    *,
    student_reg_no: str,
    course_id: int,
    session: str,
    semester: int,
    level: Union[int, str],
    exam_date: Union[date, str],
    lecturer_staff_no: Optional[str] = None,
    result_type: str = "CORE",
    ca: Optional[float] = None,
    exam: Optional[float] = None,
    grand_total: Optional[float] = None,
    actor: Optional[Actor] = None,
    directory: InstitutionDirectory = default_directory,
) -> Result:
    """
    Record a score and refresh the student's standing for that term.

    The grade is always derived from the grand total.
    """
    if not student_reg_no:
        raise ValidationError("student registration number is required")
    if ca is None and exam is None and grand_total is None:
        raise ValidationError("provide either ca/exam or a grand total")

    student = db.scalars(
        select(Student).where(Student.reg_no == student_reg_no.strip().upper())
    ).first()
    if student is None:
        raise NotFoundError(f"Student with reg no '{student_reg_no}' not found")

    key = StandingKey.build(student.id, session, semester, level)
    course = _ensure_course_scope(db, actor, course_id)

    lecturer_id = None
    if lecturer_staff_no:
        lecturer = db.scalars(
            select(Lecturer).where(Lecturer.staff_no == lecturer_staff_no.strip())
        ).first()
        if lecturer is None:
            raise NotFoundError(f"Lecturer with staff no '{lecturer_staff_no}' not found")
        lecturer_id = lecturer.id

    ca_value, exam_value, total = compute_grand_total(ca, exam, grand_total)

    result = Result(
        student_id=student.id,
        course_id=course.id,
        lecturer_id=lecturer_id,
        session=key.session,
        session_year=key.session_year,
        semester=key.semester,
        level=key.level,
        exam_date=_parse_date(exam_date),
        result_type=(result_type or "CORE").strip().upper(),
        ca=ca_value,
        exam=exam_value,
        grand_total=total,
        grade=grade_from_score(total),
    )
    db.add(result)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(
            f"{student.reg_no} already has a result for {course.code} in "
            f"{key.session} semester {key.semester}"
        )

    refresh_standings(db, [key], directory)
    return result


def _reset_moderation(result: Result) -> None:
    result.moderated = False
    result.moderation_status = "none"
    result.moderation_pending_total = None
    result.moderation_original_total = None
    result.moderation_original_grade = None
    result.moderation_approved_at = None


def update_result(
    db: Session,
    result_id: int,
    *,
    grand_total: Optional[float] = None,
    grade: Optional[str] = None,
    actor: Optional[Actor] = None,
    directory: InstitutionDirectory = default_directory,
) -> Result:
    """
    Directly correct a score outside the moderation flow.

    A new grand total re-derives the grade (unless a grade is also given) and
    clears any moderation. A grade given as "AUTO" is derived from the score.
    A grade-only edit clears moderation unless a request is pending.
    """
    if grand_total is None and grade is None:
        raise ValidationError("nothing to update")

    result = get_result(db, result_id)
    _ensure_course_scope(db, actor, result.course_id)

    # Validate everything before touching the row
    new_total = None
    if grand_total is not None:
        try:
            new_total = compute_grand_total(grand_total=float(grand_total))[2]
        except (TypeError, ValueError):
            raise ValidationError("grand total must be a number")

    symbol = None
    if grade is not None:
        symbol = grade.strip().upper()
        if symbol not in ("", AUTO_GRADE):
            symbol = normalize_grade_symbol(symbol)

    if new_total is not None:
        result.grand_total = new_total
        _reset_moderation(result)

    if symbol is None:
        result.grade = grade_from_score(result.grand_total)
    else:
        if symbol in ("", AUTO_GRADE):
            result.grade = grade_from_score(result.grand_total)
        else:
            result.grade = symbol
        result.moderated = False
        if result.moderation_status != "pending":
            _reset_moderation(result)

    key = standing_key_for(result)
    db.commit()
    refresh_standings(db, [key], directory)
    return result


def delete_result(
    db: Session,
    result_id: int,
    actor: Optional[Actor] = None,
    directory: InstitutionDirectory = default_directory,
) -> StandingKey:
    result = get_result(db, result_id)
    _ensure_course_scope(db, actor, result.course_id)

    key = standing_key_for(result)
    db.delete(result)
    db.commit()
    refresh_standings(db, [key], directory)
    return key


def delete_results(
    db: Session,
    result_ids: Iterable[int],
    actor: Optional[Actor] = None,
    directory: InstitutionDirectory = default_directory,
) -> List[StandingKey]:
    """Delete several results and recompute once per affected term."""
    ids = sorted(set(result_ids))
    if not ids:
        raise ValidationError("no result ids provided")

    results = db.scalars(select(Result).where(Result.id.in_(ids))).all()
    if not results:
        raise NotFoundError("No results found for the provided ids")

    for course_id in {r.course_id for r in results}:
        _ensure_course_scope(db, actor, course_id)

    keys = {standing_key_for(r) for r in results}
    db.execute(delete(Result).where(Result.id.in_(ids)))
    db.commit()

    refresh_standings(db, keys, directory)
    return sorted(keys)


def delete_course_results(
    db: Session,
    course_id: int,
    *,
    session: Optional[str] = None,
    semester: Optional[int] = None,
    level: Optional[Union[int, str]] = None,
    actor: Optional[Actor] = None,
    directory: InstitutionDirectory = default_directory,
) -> List[StandingKey]:
    """Delete a course's results, optionally narrowed to a term or level."""
    _ensure_course_scope(db, actor, course_id)

    filters = [Result.course_id == course_id]
    if session:
        filters.append(Result.session_year == session_year(session))
    if semester is not None:
        filters.append(Result.semester == validate_semester(semester))
    if level is not None:
        filters.append(Result.level == validate_level(level))

    rows = db.execute(
        select(Result.student_id, Result.session, Result.semester, Result.level).where(
            *filters
        )
    ).all()
    if not rows:
        raise NotFoundError("No results found for the specified filters")

    keys = {StandingKey(r.student_id, r.session, r.semester, r.level) for r in rows}
    db.execute(delete(Result).where(*filters))
    db.commit()

    refresh_standings(db, keys, directory)
    return sorted(keys)
