from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from exams_cli.academic_sessions import SessionRegistry, create_session
from exams_cli.approvals import record_approval
from exams_cli.errors import ConsistencyError, TransactionFailure
from exams_cli.models import Student
from exams_cli.standing import StandingKey
from exams_cli.standing.recompute import recompute_standing
from exams_cli.term_close import close_session, get_session_readiness
from tests.conftest import SESSION


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def session_row(db, make, department, registry):
    dean, hod, eo = (make.lecturer(department=department) for _ in range(3))
    return create_session(
        db, SESSION, "2023-10-02", dean.staff_no, hod.staff_no, eo.staff_no, registry=registry
    )


def _standing_for(db, make, department, student, level, directory, total=70, course=None):
    course = course or make.course(department, level=str(level))
    make.score(student, course, total, level=level)
    standing = recompute_standing(db, StandingKey(student.id, SESSION, 1, level), directory)
    db.commit()
    return standing


def _approve_all(db, admin, standing):
    for stage in ("ceo", "hod", "dean"):
        record_approval(db, admin, standing.id, stage, approved=True)


def test_readiness_reports_pending_count(db, make, department, directory, admin, session_row):
    standings = [
        _standing_for(db, make, department, make.student(department), 100, directory)
        for _ in range(5)
    ]
    for standing in standings[:4]:
        _approve_all(db, admin, standing)

    readiness = get_session_readiness(db, SESSION)

    assert (readiness.total, readiness.approved, readiness.pending) == (5, 4, 1)
    assert not readiness.can_close
    assert readiness.blocking_reasons == ["Semester 1: 1 pending final approval from the Dean"]

    with pytest.raises(ConsistencyError) as exc:
        close_session(db, session_row.id, registry=SessionRegistry())
    assert any("1 pending" in reason for reason in exc.value.reasons)

    _approve_all(db, admin, standings[4])
    assert get_session_readiness(db, SESSION).can_close
    closed = close_session(db, session_row.id, registry=SessionRegistry())
    assert closed.status == "completed"


def test_session_without_standings_cannot_close(db, session_row):
    readiness = get_session_readiness(db, session_row)

    assert not readiness.can_close
    assert "No academic standings" in readiness.blocking_reasons[0]
    with pytest.raises(ConsistencyError):
        close_session(db, session_row.id, registry=SessionRegistry())


def test_close_promotes_and_classifies(db, make, department, directory, admin, session_row, registry):
    fresher = make.student(department, level="100")
    sophomore = make.student(department, level="200")
    junior = make.student(department, level="300")
    finalist = make.student(department, level="400")
    repeater = make.student(department, level="400")
    alumnus = make.student(department, level="400", status="graduated")

    # finalist failed a course last session and passed the retake this session
    retaken = make.course(department, level="400")
    make.score(
        finalist, retaken, 30, session="2022/2023", level=400, exam_date=date(2023, 2, 1)
    )

    for student, level, total, course in (
        (fresher, 100, 70, None),
        (sophomore, 200, 55, None),
        (junior, 300, 35, None),
        (finalist, 400, 65, retaken),
        (repeater, 400, 20, None),
    ):
        standing = _standing_for(db, make, department, student, level, directory, total, course)
        _approve_all(db, admin, standing)

    row = close_session(db, session_row.id, end_date="2024-09-30", batch_size=1, registry=registry)

    db.expire_all()
    levels = {s.id: (s.level, s.status) for s in db.query(Student).all()}
    assert levels[fresher.id] == ("200", "undergraduate")
    assert levels[sophomore.id] == ("300", "undergraduate")
    assert levels[junior.id] == ("400", "undergraduate")
    assert levels[finalist.id] == ("400", "graduated")
    assert levels[repeater.id] == ("400", "extraYear")
    assert levels[alumnus.id] == ("400", "graduated")

    assert row.status == "completed"
    assert not row.is_current
    assert row.closed_at is not None
    assert row.end_date == date(2024, 9, 30)
    stats = row.promotion_stats
    assert stats["promoted_breakdown"] == {"100_to_200": 1, "200_to_300": 1, "300_to_400": 1}
    assert stats["promoted"] == 3
    assert (stats["graduated"], stats["extra_year"]) == (1, 1)
    assert stats["total_processed"] == 5


def test_completed_session_is_terminal(db, make, department, directory, admin, session_row):
    standing = _standing_for(db, make, department, make.student(department), 100, directory)
    _approve_all(db, admin, standing)
    first = close_session(db, session_row.id, registry=SessionRegistry())
    stats = dict(first.promotion_stats)

    with pytest.raises(ConsistencyError):
        close_session(db, session_row.id, registry=SessionRegistry())

    db.refresh(first)
    assert first.promotion_stats == stats


def test_failed_close_rolls_everything_back(
    db, make, department, directory, admin, session_row, monkeypatch
):
    junior = make.student(department, level="300")
    finalist = make.student(department, level="400")
    for student, level in ((junior, 300), (finalist, 400)):
        _approve_all(db, admin, _standing_for(db, make, department, student, level, directory))

    def broken(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr("exams_cli.term_close.outstanding_failures", broken)

    with pytest.raises(TransactionFailure):
        close_session(db, session_row.id, registry=SessionRegistry())

    db.expire_all()
    assert db.get(Student, junior.id).level == "300"
    assert db.get(Student, finalist.id).status == "undergraduate"
    assert db.get(type(session_row), session_row.id).status == "active"
