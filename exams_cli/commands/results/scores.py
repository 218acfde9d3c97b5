from typing import Iterable, Optional

import click
from sqlalchemy.orm import Session

from exams_cli.access import Actor
from exams_cli.models import Result
from exams_cli.results.service import (
    create_result,
    delete_course_results,
    delete_results,
    update_result,
)


def add_score(
    db: Session,
    reg_no: str,
    course_id: int,
    session: str,
    semester: int,
    level: str,
    exam_date: str,
    ca: Optional[float] = None,
    exam: Optional[float] = None,
    grand_total: Optional[float] = None,
    lecturer: Optional[str] = None,
    actor: Optional[Actor] = None,
) -> Result:
    result = create_result(
        db,
        student_reg_no=reg_no,
        course_id=course_id,
        session=session,
        semester=semester,
        level=level,
        exam_date=exam_date,
        lecturer_staff_no=lecturer,
        ca=ca,
        exam=exam,
        grand_total=grand_total,
        actor=actor,
    )
    click.secho(
        f"Recorded result {result.id}: {result.grand_total:g} ({result.grade})", fg="green"
    )
    return result


def edit_score(
    db: Session,
    result_id: int,
    grand_total: Optional[float] = None,
    grade: Optional[str] = None,
    actor: Optional[Actor] = None,
) -> Result:
    result = update_result(db, result_id, grand_total=grand_total, grade=grade, actor=actor)
    click.secho(
        f"Updated result {result.id}: {result.grand_total:g} ({result.grade})", fg="green"
    )
    return result


def remove_scores(
    db: Session, result_ids: Iterable[int], actor: Optional[Actor] = None
) -> int:
    keys = delete_results(db, result_ids, actor=actor)
    click.secho(f"Deleted results, {len(keys)} standing(s) refreshed", fg="green")
    return len(keys)


def remove_course_scores(
    db: Session,
    course_id: int,
    session: Optional[str] = None,
    semester: Optional[int] = None,
    level: Optional[str] = None,
    actor: Optional[Actor] = None,
) -> int:
    keys = delete_course_results(
        db, course_id, session=session, semester=semester, level=level, actor=actor
    )
    click.secho(
        f"Deleted course {course_id} results, {len(keys)} standing(s) refreshed", fg="green"
    )
    return len(keys)
