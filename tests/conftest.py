import os
import tempfile
from datetime import date

os.environ.setdefault("EXAMS_LOG_DIR", tempfile.mkdtemp(prefix="exams-cli-logs-"))

import pytest

from exams_cli.access import Actor
from exams_cli.db.config import create_db_engine, get_session_factory
from exams_cli.grading import grade_from_score
from exams_cli.institutions import InstitutionDirectory
from exams_cli.models import (
    Base,
    College,
    Course,
    CourseRegistration,
    Department,
    Lecturer,
    Result,
    Student,
)
from exams_cli.standing.sessions import session_year

SESSION = "2023/2024"


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = get_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def directory():
    return InstitutionDirectory()


class Factory:
    """Creates reference rows with sensible defaults."""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def college(self, code=None, name="College of Natural Sciences"):
        row = College(code=code or f"C{self._next()}", name=name)
        self.db.add(row)
        self.db.commit()
        return row

    def department(self, college=None, name="Biochemistry"):
        college = college or self.college()
        row = Department(name=name, college_id=college.id)
        self.db.add(row)
        self.db.commit()
        return row

    def lecturer(self, staff_no=None, department=None, surname="Okafor", firstname="Ada"):
        row = Lecturer(
            staff_no=staff_no or f"SP{self._next():04d}",
            title="Dr.",
            surname=surname,
            firstname=firstname,
            department_id=department.id if department else None,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def student(self, department, reg_no=None, level="100", entry_mode="UE", status="undergraduate"):
        row = Student(
            reg_no=reg_no or f"BCH/{self._next():04d}/{entry_mode}",
            surname="Bello",
            firstname="Tunde",
            entry_mode=entry_mode,
            level=level,
            status=status,
            department_id=department.id,
            college_id=department.college_id,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def course(self, department, code=None, unit=3, level="100", semester=1):
        row = Course(
            code=code or f"BCH{self._next():03d}",
            title="Introductory Biochemistry",
            unit=unit,
            level=level,
            semester=semester,
            department_id=department.id,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def register(self, student, course, session=SESSION, semester=1, level=100):
        row = CourseRegistration(
            student_id=student.id,
            course_id=course.id,
            session=session,
            session_year=session_year(session),
            semester=semester,
            level=level,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def score(
        self,
        student,
        course,
        total,
        session=SESSION,
        semester=1,
        level=100,
        exam_date=None,
        grade=None,
    ):
        """Insert a result row directly, without refreshing standings."""
        row = Result(
            student_id=student.id,
            course_id=course.id,
            session=session,
            session_year=session_year(session),
            semester=semester,
            level=level,
            exam_date=exam_date or date(session_year(session) + 1, 2 * semester, 1),
            grand_total=total,
            grade=grade or grade_from_score(total),
        )
        self.db.add(row)
        self.db.commit()
        return row


@pytest.fixture
def make(db):
    return Factory(db)


@pytest.fixture
def department(make):
    return make.department()


@pytest.fixture
def admin():
    return Actor(name="Registry Admin", roles=frozenset({"ADMIN"}), staff_no="SP0000")


@pytest.fixture
def officer(department):
    return Actor(
        name="Exam Officer",
        roles=frozenset({"COLLEGE_OFFICER"}),
        staff_no="SP1001",
        department_id=department.id,
        college_id=department.college_id,
    )


@pytest.fixture
def hod(department):
    return Actor(
        name="Head of Department",
        roles=frozenset({"HOD"}),
        staff_no="SP1002",
        department_id=department.id,
        college_id=department.college_id,
    )


@pytest.fixture
def dean(department):
    return Actor(
        name="Dean of Faculty",
        roles=frozenset({"DEAN"}),
        staff_no="SP1003",
        college_id=department.college_id,
    )
