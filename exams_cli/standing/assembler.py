from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from exams_cli.models import Course, CourseRegistration, Result
from exams_cli.standing import StandingKey
from exams_cli.standing.calculator import AttemptedCourse


def assemble_attempted_courses(db: Session, key: StandingKey) -> List[AttemptedCourse]:
    """
    Build the attempted-course list of a student's term from registrations
    and recorded results.

    Every registered course counts: with its result's grade when one exists,
    as an F otherwise. Results for courses the student is not registered for
    count only when the student has no registrations at all that term.
    """
    year = key.session_year

    registered_ids = set(
        db.scalars(
            select(CourseRegistration.course_id).where(
                CourseRegistration.student_id == key.student_id,
                CourseRegistration.session_year == year,
                CourseRegistration.semester == key.semester,
                CourseRegistration.level == key.level,
            )
        ).all()
    )

    scored_rows = db.execute(
        select(Result.course_id, Result.grade, Course.unit)
        .join(Course, Course.id == Result.course_id)
        .where(
            Result.student_id == key.student_id,
            Result.session_year == year,
            Result.semester == key.semester,
            Result.level == key.level,
        )
    ).all()

    by_course: Dict[int, AttemptedCourse] = {
        row.course_id: AttemptedCourse(unit=row.unit or 0, grade=row.grade or "F")
        for row in scored_rows
    }

    missing_ids = registered_ids - by_course.keys()
    unit_by_course: Dict[int, int] = {}
    if missing_ids:
        unit_by_course = {
            row.id: row.unit
            for row in db.execute(
                select(Course.id, Course.unit).where(Course.id.in_(missing_ids))
            )
        }

    attempted: List[AttemptedCourse] = []
    for course_id in sorted(registered_ids):
        if course_id in by_course:
            attempted.append(by_course[course_id])
        else:
            attempted.append(
                AttemptedCourse(unit=unit_by_course.get(course_id) or 0, grade="F")
            )

    if not registered_ids:
        attempted.extend(by_course[course_id] for course_id in sorted(by_course))

    return attempted
