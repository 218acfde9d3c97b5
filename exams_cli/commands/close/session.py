from typing import Optional, Union

import click
from sqlalchemy.orm import Session

from exams_cli.academic_sessions import (
    create_session,
    get_current_session,
    get_session,
    list_sessions,
)
from exams_cli.models import AcademicSession
from exams_cli.term_close import SessionReadiness, close_session, get_session_readiness


def open_session(
    db: Session,
    title: str,
    start_date: Optional[str],
    dean: str,
    hod: str,
    exam_officer: str,
) -> AcademicSession:
    row = create_session(db, title, start_date, dean, hod, exam_officer)
    click.secho(f"Session {row.title} opened and set as current (id {row.id})", fg="green")
    for role, officer in row.principal_officers.items():
        click.echo(f"  {role}: {officer['name']} ({officer['staff_no']})")
    return row


def show_sessions(db: Session) -> None:
    sessions = list_sessions(db)
    if not sessions:
        click.secho("No academic sessions found.", fg="yellow")
        return
    for s in sessions:
        marker = "*" if s.is_current else " "
        closed = f" closed {s.closed_at:%Y-%m-%d}" if s.closed_at else ""
        click.echo(f"{marker} [{s.id}] {s.title} {s.status}{closed}")


def show_current_session(db: Session) -> None:
    current = get_current_session(db)
    if current is None:
        click.secho("No active session found.", fg="yellow")
        return
    click.echo(f"{current.title} (id {current.id}), started {current.start_date}")


def show_readiness(db: Session, session: Union[int, str]) -> SessionReadiness:
    row = get_session(db, session)
    readiness = get_session_readiness(db, row)

    click.echo(f"Session {readiness.session} ({row.status})")
    for semester in sorted(readiness.semesters):
        s = readiness.semesters[semester]
        click.echo(
            f"  Semester {semester}: {s.total} standing(s), "
            f"{s.approved} approved, {s.pending} pending"
        )
    click.echo(f"  Final-year standings: {readiness.final_year_standings}")
    click.echo(f"  Final-year students awaiting outcome: {readiness.final_year_students}")

    if readiness.can_close:
        click.secho("Ready to close.", fg="green")
    else:
        click.secho("Not ready to close:", fg="red")
        for reason in readiness.blocking_reasons:
            click.secho(f"  - {reason}", fg="red")
    return readiness


def close_session_cmd(
    db: Session,
    session: Union[int, str],
    end_date: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> AcademicSession:
    target = get_session(db, session)
    click.echo(f"Closing session {target.title}...")

    kwargs = {"end_date": end_date}
    if batch_size:
        kwargs["batch_size"] = batch_size
    row = close_session(db, target.id, **kwargs)

    stats = row.promotion_stats
    click.secho(f"Session {row.title} closed.", fg="green")
    for step, count in stats["promoted_breakdown"].items():
        click.echo(f"  Promoted {step.replace('_', ' ')}: {count}")
    click.echo(f"  Graduated: {stats['graduated']}")
    click.echo(f"  Extra year: {stats['extra_year']}")
    click.echo(f"  Total processed: {stats['total_processed']}")
    return row
