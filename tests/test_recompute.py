import threading

from sqlalchemy import func, select

from exams_cli.cache import KeyedLocks
from exams_cli.db.config import create_db_engine, get_session_factory
from exams_cli.institutions import InstitutionDirectory
from exams_cli.models import AcademicStanding, Base, StandingApproval
from exams_cli.standing import StandingKey
from exams_cli.standing import recompute as recompute_module
from exams_cli.standing.recompute import (
    _standing_locks,
    recompute_and_commit,
    recompute_many,
    recompute_standing,
)
from tests.conftest import SESSION, Factory


def _standings(db):
    return db.scalars(select(AcademicStanding)).all()


def test_registered_course_without_score_counts_as_f(db, make, department, directory):
    student = make.student(department)
    scored = make.course(department, unit=3)
    unscored = make.course(department, unit=2)
    make.register(student, scored)
    make.register(student, unscored)
    make.score(student, scored, 75)

    standing = recompute_standing(db, StandingKey(student.id, SESSION, 1, 100), directory)
    db.commit()

    assert (standing.tcc, standing.tce, standing.tpe) == (5, 3, 15)
    assert standing.gpa == 3.0
    assert standing.department_id == department.id
    assert standing.college_id == department.college_id


def test_scores_count_without_registrations(db, make, department, directory):
    student = make.student(department)
    course = make.course(department, unit=4)
    make.score(student, course, 62)

    standing = recompute_standing(db, StandingKey(student.id, SESSION, 1, 100), directory)

    assert (standing.tcc, standing.tce, standing.tpe) == (4, 4, 16)


def test_unregistered_scores_ignored_when_registrations_exist(db, make, department, directory):
    student = make.student(department)
    registered = make.course(department, unit=3)
    extra = make.course(department, unit=3)
    make.register(student, registered)
    make.score(student, registered, 80)
    make.score(student, extra, 80)

    standing = recompute_standing(db, StandingKey(student.id, SESSION, 1, 100), directory)

    assert standing.tcc == 3


def test_recompute_is_idempotent(db, make, department, directory):
    student = make.student(department)
    course = make.course(department)
    make.score(student, course, 55)
    key = StandingKey(student.id, SESSION, 1, 100)

    first = recompute_standing(db, key, directory)
    db.commit()
    stamp = first.last_updated
    values = (first.tcc, first.gpa, first.ccc, first.cgpa)

    second = recompute_standing(db, key, directory)
    db.commit()

    assert db.scalar(select(func.count(AcademicStanding.id))) == 1
    assert second.id == first.id
    assert (second.tcc, second.gpa, second.ccc, second.cgpa) == values
    assert second.last_updated == stamp


def test_new_standing_gets_three_unapproved_stages(db, make, department, directory):
    student = make.student(department)
    course = make.course(department)
    make.score(student, course, 90)

    standing = recompute_standing(db, StandingKey(student.id, SESSION, 1, 100), directory)
    db.commit()

    stages = sorted(a.stage for a in standing.approvals)
    assert stages == ["ceo", "dean", "hod"]
    assert not any(a.approved for a in standing.approvals)


def test_recompute_keeps_approvals(db, make, department, directory):
    student = make.student(department)
    course = make.course(department)
    result = make.score(student, course, 90)
    key = StandingKey(student.id, SESSION, 1, 100)
    standing = recompute_standing(db, key, directory)
    standing.approval("ceo").approved = True
    db.commit()

    result.grand_total = 48
    result.grade = "D"
    db.commit()
    recompute_standing(db, key, directory)
    db.commit()

    db.expire_all()
    refreshed = db.get(AcademicStanding, standing.id)
    assert refreshed.gpa == 2.0
    assert refreshed.is_approved("ceo")


def test_nothing_attempted_removes_standing(db, make, department, directory):
    student = make.student(department)
    course = make.course(department)
    result = make.score(student, course, 65)
    key = StandingKey(student.id, SESSION, 1, 100)
    recompute_standing(db, key, directory)
    db.commit()

    db.delete(result)
    db.commit()
    assert recompute_standing(db, key, directory) is None
    db.commit()

    assert _standings(db) == []
    assert db.scalar(select(func.count(StandingApproval.id))) == 0


def test_previous_snapshot_chains_terms(db, make, department, directory):
    student = make.student(department)
    first = make.course(department, unit=3)
    second = make.course(department, unit=2, semester=2)
    make.score(student, first, 72)
    make.score(student, second, 50, semester=2)

    outcome = recompute_many(
        db,
        [
            StandingKey(student.id, SESSION, 2, 100),
            StandingKey(student.id, SESSION, 1, 100),
        ],
        directory,
    )
    db.commit()

    sem1 = outcome[StandingKey(student.id, SESSION, 1, 100)]
    sem2 = outcome[StandingKey(student.id, SESSION, 2, 100)]
    assert sem1.previous_ccc == 0
    assert (sem2.previous_ccc, sem2.previous_cce, sem2.previous_cpe) == (3, 3, 15)
    assert sem2.previous_cgpa == sem1.cgpa
    assert (sem2.ccc, sem2.cpe) == (5, 21)
    assert sem2.cgpa == 4.2


def test_earlier_change_cascades_to_later_terms(db, make, department, directory):
    student = make.student(department)
    first = make.course(department, unit=3)
    later = make.course(department, unit=3, level="200")
    result = make.score(student, first, 72)
    make.score(student, later, 72, session="2024/2025", level=200)
    recompute_many(
        db,
        [
            StandingKey(student.id, SESSION, 1, 100),
            StandingKey(student.id, "2024/2025", 1, 200),
        ],
        directory,
    )
    db.commit()

    result.grand_total = 30
    result.grade = "F"
    db.commit()
    recompute_many(db, [StandingKey(student.id, SESSION, 1, 100)], directory)
    db.commit()

    db.expire_all()
    later_standing = db.scalars(
        select(AcademicStanding).where(AcademicStanding.level == 200)
    ).one()
    assert later_standing.previous_cpe == 0
    assert later_standing.previous_ccc == 3
    assert later_standing.cgpa == 2.5


def test_recompute_many_deduplicates_keys(db, make, department, directory):
    student = make.student(department)
    course = make.course(department)
    make.score(student, course, 66)
    key = StandingKey(student.id, SESSION, 1, 100)

    outcome = recompute_many(db, [key, key, StandingKey.build(student.id, SESSION, "1", "100L")], directory)
    db.commit()

    assert list(outcome) == [key]
    assert len(_standings(db)) == 1


def test_lone_registered_course_without_score(db, make, department, directory):
    student = make.student(department)
    make.register(student, make.course(department, unit=3))

    standing = recompute_standing(db, StandingKey(student.id, SESSION, 1, 100), directory)

    assert (standing.tcc, standing.tce, standing.tpe) == (3, 0, 0)
    assert standing.gpa == 0.0


def test_insert_race_falls_back_to_update(db, make, department, directory, monkeypatch):
    student = make.student(department)
    result = make.score(student, make.course(department), 90)
    key = StandingKey(student.id, SESSION, 1, 100)
    standing = recompute_standing(db, key, directory)
    standing.approval("ceo").approved = True
    db.commit()

    result.grand_total = 55
    result.grade = "C"
    db.commit()

    # the first lookup misses the row another writer already inserted
    real_find = recompute_module._find_standing
    misses = [None]

    def find_after_race(session, k):
        if misses:
            return misses.pop()
        return real_find(session, k)

    monkeypatch.setattr(recompute_module, "_find_standing", find_after_race)
    recompute_standing(db, key, directory)
    db.commit()

    db.expire_all()
    (row,) = _standings(db)
    assert row.id == standing.id
    assert row.gpa == 3.0
    assert row.is_approved("ceo")
    assert db.scalar(select(func.count()).select_from(StandingApproval)) == 3


def test_student_lock_is_held_until_commit(db, make, department, directory, monkeypatch):
    student = make.student(department)
    make.score(student, make.course(department), 70)
    key = StandingKey(student.id, SESSION, 1, 100)

    acquired = threading.Event()

    def other_writer():
        with _standing_locks.hold(student.id):
            acquired.set()

    seen = {}
    real_commit = db.commit

    def commit():
        seen["thread"] = threading.Thread(target=other_writer)
        seen["thread"].start()
        seen["acquired_before_commit"] = acquired.wait(timeout=0.2)
        real_commit()

    monkeypatch.setattr(db, "commit", commit)
    recompute_and_commit(db, [key], directory)
    seen["thread"].join(timeout=5)

    assert seen["acquired_before_commit"] is False
    assert acquired.is_set()
    assert len(_standing_locks) == 0


def test_concurrent_recomputes_of_one_key_leave_one_row(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'exams.db'}")
    Base.metadata.create_all(engine)
    factory = get_session_factory(engine)

    setup = factory()
    make = Factory(setup)
    department = make.department()
    student = make.student(department)
    course = make.course(department, unit=3)
    make.register(student, course)
    make.score(student, course, 65)
    key = StandingKey(student.id, SESSION, 1, 100)
    setup.close()

    start = threading.Barrier(2)
    errors = []

    def writer():
        session = factory()
        try:
            start.wait()
            recompute_and_commit(session, [key], InstitutionDirectory())
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    writers = [threading.Thread(target=writer) for _ in range(2)]
    for thread in writers:
        thread.start()
    for thread in writers:
        thread.join(timeout=30)

    check = factory()
    try:
        assert errors == []
        (row,) = check.scalars(select(AcademicStanding)).all()
        assert (row.tcc, row.tce, row.tpe, row.gpa) == (3, 3, 12, 4.0)
        assert check.scalar(select(func.count()).select_from(StandingApproval)) == 3
    finally:
        check.close()
        engine.dispose()


def test_keyed_locks_are_reentrant_and_pruned():
    locks = KeyedLocks()

    with locks.hold_many([3, 1, 3]):
        with locks.hold(1):
            assert len(locks) == 2

    assert len(locks) == 0
