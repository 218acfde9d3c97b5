from typing import Dict, Iterable, Iterator, List, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from exams_cli.grading import is_failing_grade
from exams_cli.models import Course, Result

T = TypeVar("T")

IN_CLAUSE_CHUNK = 500


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def latest_attempts(
    db: Session, student_ids: Iterable[int], chunk_size: int = IN_CLAUSE_CHUNK
) -> List[Row]:
    """
    The latest attempt of every course each student has a result for,
    across their whole history.

    Latest means most recent exam date, then session, then semester.
    Rows carry student_id, course_id, code, unit, grand_total, grade,
    session and semester.
    """
    ids = sorted(set(student_ids))
    rows: List[Row] = []
    for chunk in chunked(ids, chunk_size):
        ranked = (
            select(
                Result.student_id,
                Result.course_id,
                Result.grand_total,
                Result.grade,
                Result.session,
                Result.semester,
                func.row_number()
                .over(
                    partition_by=(Result.student_id, Result.course_id),
                    order_by=(
                        Result.exam_date.desc(),
                        Result.session_year.desc(),
                        Result.semester.desc(),
                    ),
                )
                .label("attempt_rank"),
            )
            .where(Result.student_id.in_(chunk))
            .subquery()
        )
        stmt = (
            select(
                ranked.c.student_id,
                ranked.c.course_id,
                Course.code,
                Course.unit,
                ranked.c.grand_total,
                ranked.c.grade,
                ranked.c.session,
                ranked.c.semester,
            )
            .join(Course, Course.id == ranked.c.course_id)
            .where(ranked.c.attempt_rank == 1)
        )
        rows.extend(db.execute(stmt).all())
    return rows


def outstanding_failures(
    db: Session, student_ids: Iterable[int], chunk_size: int = IN_CLAUSE_CHUNK
) -> Dict[int, List[Row]]:
    """Per student, the courses whose latest attempt is an F."""
    failed: Dict[int, List[Row]] = {}
    for row in latest_attempts(db, student_ids, chunk_size):
        if is_failing_grade(row.grade):
            failed.setdefault(row.student_id, []).append(row)
    return failed
