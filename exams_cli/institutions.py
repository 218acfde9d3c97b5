from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from exams_cli.cache import TTLCache
from exams_cli.errors import NotFoundError
from exams_cli.models import Department, Student

STUDENT_INSTITUTION_TTL_SECONDS = 300


@dataclass(frozen=True)
class StudentInstitution:
    department_id: Optional[int]
    college_id: Optional[int]


class InstitutionDirectory:
    """
    Resolves student department/college ids and department names.

    A student's institution ids are cached for `ttl_seconds`. No operation in
    this package moves a student between departments; a transfer made
    elsewhere shows here once the entry expires, or at once after
    `invalidate(student_id)`.
    """

    def __init__(self, ttl_seconds: float = STUDENT_INSTITUTION_TTL_SECONDS):
        self._students: TTLCache[StudentInstitution] = TTLCache(ttl_seconds)

    def for_student(self, db: Session, student_id: int) -> StudentInstitution:
        cached = self._students.get(student_id)
        if cached is not None:
            return cached

        row = db.execute(
            select(Student.department_id, Student.college_id).where(
                Student.id == student_id
            )
        ).first()
        if row is None:
            raise NotFoundError(f"Student {student_id} not found")

        info = StudentInstitution(
            department_id=row.department_id, college_id=row.college_id
        )
        self._students.set(student_id, info)
        return info

    def invalidate(self, student_id: int) -> None:
        self._students.invalidate(student_id)

    def clear(self) -> None:
        self._students.clear()

    @staticmethod
    def department_names(
        db: Session, department_ids: Iterable[Optional[int]]
    ) -> Dict[int, str]:
        ids = {i for i in department_ids if i is not None}
        if not ids:
            return {}
        rows = db.execute(
            select(Department.id, Department.name).where(Department.id.in_(ids))
        )
        return {row.id: row.name for row in rows}


default_directory = InstitutionDirectory()
