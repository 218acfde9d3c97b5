import pytest

from exams_cli.access import Actor, actor_from_lecturer, ensure_can_access_department
from exams_cli.errors import AuthorizationError, NotFoundError, ValidationError
from exams_cli.standing import StandingKey
from exams_cli.standing.sessions import SessionKey


def test_global_roles_skip_department_scope():
    dean = Actor(name="Dean", roles=frozenset({"DEAN"}))
    ensure_can_access_department(dean, department_id=7)
    ensure_can_access_department(None, department_id=7)


def test_scoped_roles_need_matching_department():
    officer = Actor(name="EO", roles=frozenset({"EXAM_OFFICER"}), department_id=1, college_id=1)
    ensure_can_access_department(officer, 1, 1)
    with pytest.raises(AuthorizationError):
        ensure_can_access_department(officer, 2)
    with pytest.raises(AuthorizationError):
        ensure_can_access_department(officer, 1, college_id=2)
    with pytest.raises(AuthorizationError):
        ensure_can_access_department(Actor(name="HOD", roles=frozenset({"HOD"})), 1)


def test_actor_from_lecturer(db, make, department):
    lecturer = make.lecturer(staff_no="SP0100", department=department)

    actor = actor_from_lecturer(db, "SP0100", ["hod"])

    assert actor.roles == frozenset({"HOD"})
    assert actor.department_id == department.id
    assert actor.college_id == department.college_id
    assert actor.name == lecturer.full_name

    with pytest.raises(AuthorizationError):
        actor_from_lecturer(db, "SP0100", ["janitor"])
    with pytest.raises(NotFoundError):
        actor_from_lecturer(db, "SP0404", ["HOD"])


def test_session_keys_sort_by_start_year():
    assert SessionKey.parse("2009/2010") < SessionKey.parse("2010/2011")
    assert SessionKey.parse(" 2023/2024 ").label == "2023/2024"
    with pytest.raises(ValidationError):
        SessionKey.parse("2023/2022")


def test_standing_key_build_normalizes():
    key = StandingKey.build(4, "2023/2024", "2", "300L")
    assert key == StandingKey(4, "2023/2024", 2, 300)
    assert key.session_year == 2023
    with pytest.raises(ValidationError):
        StandingKey.build(4, "2023/2024", 3, 300)
    with pytest.raises(ValidationError):
        StandingKey.build(4, "2023/2024", 1, 500)


def test_institution_directory_caches_until_invalidated(db, make, department, directory):
    student = make.student(department)
    assert directory.for_student(db, student.id).department_id == department.id

    moved_to = make.department(name="Microbiology")
    student.department_id = moved_to.id
    db.commit()
    assert directory.for_student(db, student.id).department_id == department.id

    directory.invalidate(student.id)
    assert directory.for_student(db, student.id).department_id == moved_to.id
    with pytest.raises(NotFoundError):
        directory.for_student(db, 9999)
