import pytest
from click.testing import CliRunner

from exams_cli.academic_sessions import default_registry
from exams_cli.institutions import default_directory
from exams_cli.main import cli
from exams_cli.models import AcademicStanding, Result
from tests.conftest import SESSION


@pytest.fixture(autouse=True)
def clear_caches(monkeypatch):
    monkeypatch.setattr("exams_cli.main.configure_from_env", lambda: None)
    default_directory.clear()
    default_registry.invalidate()
    yield
    default_directory.clear()
    default_registry.invalidate()


@pytest.fixture
def run(db):
    runner = CliRunner()

    def invoke(*args, input=None):
        return runner.invoke(cli, list(args), obj={"db": db}, input=input)

    return invoke


@pytest.fixture
def scored_student(make, department):
    student = make.student(department, reg_no="BCH/0001/UE")
    course = make.course(department, code="BCH101", unit=3)
    make.register(student, course)
    make.score(student, course, 68)
    return student, course


def test_recompute_and_show(run, db, scored_student):
    result = run("standing", "recompute", "--session", SESSION, "--semester", "1")
    assert result.exit_code == 0, result.output
    assert "Recomputed 1 standing(s)" in result.output

    result = run("standing", "show", "bch/0001/ue", "--session", SESSION, "--semester", "1", "--level", "100")
    assert result.exit_code == 0, result.output
    assert "GPA 4.00" in result.output
    assert "ceo: pending" in result.output


def test_approval_flow_through_cli(run, db, make, department, scored_student):
    officer = make.lecturer(staff_no="SP2001", department=department)
    run("standing", "recompute", "--session", SESSION, "--semester", "1")
    standing_id = db.query(AcademicStanding.id).scalar()

    result = run("approvals", "pending", "ceo", "--staff-no", officer.staff_no, "--role", "COLLEGE_OFFICER")
    assert result.exit_code == 0, result.output
    assert "BCH101" in result.output
    assert "1 standing(s) pending" in result.output

    result = run("approvals", "record", "hod", standing_id, "--staff-no", officer.staff_no, "--role", "HOD")
    assert "requires prior approval" in result.output

    result = run(
        "approvals", "record", "ceo", "--all", "--staff-no", officer.staff_no, "--role", "COLLEGE_OFFICER"
    )
    assert result.exit_code == 0, result.output
    assert "Recorded 1/1" in result.output


def test_moderation_commands(run, db, make, department, scored_student):
    student, course = scored_student
    run("standing", "recompute", "--session", SESSION, "--semester", "1")
    result_id = db.query(Result.id).scalar()

    result = run("moderation", "submit", str(result_id), "72", "--proof", "memo 4", "--authorized-by", "SP0009")
    assert result.exit_code == 0, result.output
    assert "awaiting approval" in result.output

    result = run("moderation", "approve", str(result_id))
    assert result.exit_code == 0, result.output
    assert "72 (A)" in result.output

    result = run("moderation", "approve", str(result_id))
    assert result.exit_code == 1
    assert "No pending moderation" in result.output


def test_close_refused_with_reasons(run, db, make, department, scored_student):
    dean, hod, eo = (make.lecturer(department=department) for _ in range(3))
    result = run(
        "session", "open", SESSION,
        "--dean", dean.staff_no, "--hod", hod.staff_no, "--exam-officer", eo.staff_no,
    )
    assert result.exit_code == 0, result.output

    run("standing", "recompute", "--session", SESSION, "--semester", "1")

    result = run("session", "readiness", SESSION)
    assert "1 pending final approval" in result.output

    result = run("session", "close", SESSION, "--yes")
    assert result.exit_code == 1
    assert "Semester 1: 1 pending final approval from the Dean" in result.output

    result = run("session", "list")
    assert SESSION in result.output
