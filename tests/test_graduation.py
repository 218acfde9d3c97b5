from datetime import date

from openpyxl import load_workbook

from exams_cli.commands.export.graduating_list import export_graduating_list
from exams_cli.graduation import get_graduating_list, minimum_cce, reg_no_sort_key
from exams_cli.standing import StandingKey
from exams_cli.standing.recompute import recompute_many
from tests.conftest import SESSION


def _history(db, make, department, student, finals_total, directory, earlier_units=135):
    """A 300 level term worth `earlier_units` earned units, then one 400 level course."""
    big = make.course(department, level="300", unit=earlier_units)
    make.score(student, big, 60, session="2022/2023", level=300, exam_date=date(2023, 2, 1))
    final = make.course(department, level="400", unit=3)
    make.score(student, final, finals_total, level=400)
    recompute_many(
        db,
        [
            StandingKey(student.id, "2022/2023", 1, 300),
            StandingKey(student.id, SESSION, 1, 400),
        ],
        directory,
    )
    db.commit()


def test_minimum_cce_depends_on_entry_mode():
    assert minimum_cce("UE") == 135
    assert minimum_cce("DE") == 86


def test_reg_no_sort_key_orders_by_serial_then_suffix():
    reg_nos = [("BCH/0010/UE", "UE"), ("BCH/0002/DE", "DE"), ("BCH/0002/UE", "UE")]
    ordered = sorted(reg_nos, key=lambda r: reg_no_sort_key(*r))
    assert [r[0] for r in ordered] == ["BCH/0002/DE", "BCH/0002/UE", "BCH/0010/UE"]


def test_graduating_list_eligibility(db, make, department, directory):
    eligible = make.student(department, reg_no="BCH/0003/UE", level="400")
    failing = make.student(department, reg_no="BCH/0001/UE", level="400")
    short = make.student(department, reg_no="BCH/0002/UE", level="400")
    _history(db, make, department, eligible, 70, directory)
    _history(db, make, department, failing, 20, directory)
    _history(db, make, department, short, 70, directory, earlier_units=100)

    listing = get_graduating_list(db, SESSION, 1)

    assert [s.reg_no for s in listing.students] == ["BCH/0001/UE", "BCH/0002/UE", "BCH/0003/UE"]
    by_reg = {s.reg_no: s for s in listing.students}

    assert by_reg["BCH/0003/UE"].eligible
    assert by_reg["BCH/0003/UE"].cgpa_by_level[300] == 4.0
    assert by_reg["BCH/0003/UE"].cgpa_by_level[100] == 0.0

    failed = by_reg["BCH/0001/UE"]
    assert not failed.eligible
    assert failed.reasons == ["Outstanding failed course(s)"]
    assert [c.grade for c in failed.failed_courses] == ["F"]

    assert not by_reg["BCH/0002/UE"].eligible
    assert "CCE below minimum" in by_reg["BCH/0002/UE"].reasons[0]
    assert (listing.eligible_count, listing.ineligible_count) == (1, 2)


def test_direct_entry_needs_fewer_units(db, make, department, directory):
    student = make.student(department, reg_no="BCH/0004/DE", level="400", entry_mode="DE")
    _history(db, make, department, student, 70, directory, earlier_units=90)

    (row,) = get_graduating_list(db, SESSION, 1).students

    assert row.min_cce == 86
    assert row.eligible


def test_export_writes_workbook(db, make, department, directory, tmp_path):
    student = make.student(department, reg_no="BCH/0005/UE", level="400")
    _history(db, make, department, student, 70, directory)

    path = export_graduating_list(db, SESSION, 1, output_dir=str(tmp_path))

    wb = load_workbook(path)
    ws = wb["Graduating List"]
    assert ws.cell(row=1, column=2).value == "Reg No"
    assert ws.cell(row=2, column=2).value == "BCH/0005/UE"
    assert ws.cell(row=2, column=15).value == "Yes"
    assert wb["Summary"].cell(row=4, column=2).value == 1


def test_export_with_no_standings_writes_nothing(db, tmp_path):
    assert export_graduating_list(db, SESSION, 1, output_dir=str(tmp_path)) is None
    assert list(tmp_path.iterdir()) == []
