import os
from datetime import datetime
from typing import List, Optional, Union

import click
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from exams_cli.graduation import GraduatingList, get_graduating_list

HEADERS = [
    "S/N",
    "Reg No",
    "Full Name",
    "Entry",
    "CGPA 100L",
    "CGPA 200L",
    "CGPA 300L",
    "TCC",
    "TCE",
    "GPA",
    "CCC",
    "CCE",
    "CGPA",
    "Failed Courses",
    "Eligible",
    "Remarks",
]


def _autosize(ws, widths: List[int], limit: int = 50) -> None:
    for idx, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(idx)].width = min(width + 2, limit)


def _write_header(ws, headers: List[str]) -> List[int]:
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="000000", end_color="000000", fill_type="solid")
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
    return [len(h) for h in headers]


def build_workbook(listing: GraduatingList) -> Workbook:
    wb = Workbook()
    ws = wb.active
    if ws is None:
        ws = wb.create_sheet("Graduating List")
    else:
        ws.title = "Graduating List"

    widths = _write_header(ws, HEADERS)
    ineligible_fill = PatternFill(start_color="FDE2E1", end_color="FDE2E1", fill_type="solid")

    for row, student in enumerate(listing.students, 2):
        failed = ", ".join(
            f"{c.code} ({c.session} S{c.semester})" for c in student.failed_courses
        )
        values = [
            row - 1,
            student.reg_no,
            student.full_name,
            student.entry_mode,
            student.cgpa_by_level.get(100, 0.0),
            student.cgpa_by_level.get(200, 0.0),
            student.cgpa_by_level.get(300, 0.0),
            student.tcc,
            student.tce,
            student.gpa,
            student.ccc,
            student.cce,
            student.cgpa,
            failed,
            "Yes" if student.eligible else "No",
            "; ".join(student.reasons),
        ]
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row, column=col, value=value)
            if not student.eligible:
                cell.fill = ineligible_fill
            if value is not None:
                widths[col - 1] = max(widths[col - 1], len(str(value)))

    _autosize(ws, widths)
    ws.freeze_panes = "A2"

    summary = wb.create_sheet("Summary")
    summary_widths = _write_header(summary, ["Item", "Value"])
    rows = [
        ("Session", listing.session),
        ("Semester", listing.semester),
        ("Total", len(listing.students)),
        ("Eligible", listing.eligible_count),
        ("Not eligible", listing.ineligible_count),
        ("Generated", datetime.now().strftime("%Y-%m-%d %H:%M")),
    ]
    for row, (label, value) in enumerate(rows, 2):
        label_cell = summary.cell(row=row, column=1, value=label)
        label_cell.font = Font(bold=True, color="444444")
        summary.cell(row=row, column=2, value=value)
        summary_widths[0] = max(summary_widths[0], len(label))
        summary_widths[1] = max(summary_widths[1], len(str(value)))
    _autosize(summary, summary_widths)

    return wb


def export_graduating_list(
    db: Session,
    session: str,
    semester: Union[int, str],
    output_dir: str = "exports",
    filename: Optional[str] = None,
) -> Optional[str]:
    """Write the graduating list of a term to an Excel workbook."""
    click.echo(f"Computing graduating list for {session} semester {semester}...")
    listing = get_graduating_list(db, session, semester)

    if not listing.students:
        click.secho("No 400 level standings found for that term.", fg="yellow")
        return None

    os.makedirs(output_dir, exist_ok=True)
    if not filename:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"graduating_list_{listing.session.replace('/', '-')}_S{listing.semester}_{timestamp}.xlsx"
    path = os.path.join(output_dir, filename)

    build_workbook(listing).save(path)

    click.secho(f"Successfully exported graduating list to: {path}", fg="green")
    click.echo(f"\nSummary:")
    click.echo(f"- Total students: {len(listing.students)}")
    click.echo(f"- Eligible: {listing.eligible_count}")
    click.echo(f"- Not eligible: {listing.ineligible_count}")
    return path
