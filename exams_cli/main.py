import functools
from typing import Optional

import click
from sqlalchemy.orm import Session

from exams_cli.access import Actor, actor_from_lecturer
from exams_cli.approvals import get_standing
from exams_cli.commands.approve.standings import (
    approve_queue,
    approve_standings,
    show_pending_standings,
)
from exams_cli.commands.close.session import (
    close_session_cmd,
    open_session,
    show_current_session,
    show_readiness,
    show_sessions,
)
from exams_cli.commands.export.graduating_list import export_graduating_list
from exams_cli.commands.moderate import result as moderation_cmd
from exams_cli.commands.recompute.standings import recompute_term_standings
from exams_cli.commands.results.scores import (
    add_score,
    edit_score,
    remove_course_scores,
    remove_scores,
)
from exams_cli.db.config import EXAMS_DATABASE_URL, get_engine, get_session_factory
from exams_cli.errors import ConsistencyError, ExamsError
from exams_cli.models import Base
from exams_cli.utils.logging_config import configure_from_env, get_logger

logger = get_logger(__name__)


def get_db(ctx: click.Context) -> Session:
    """The session handed in by the caller, or a new one for the configured database."""
    obj = ctx.ensure_object(dict)
    if obj.get("db") is None:
        engine = get_engine(use_local=not EXAMS_DATABASE_URL)
        obj["db"] = get_session_factory(engine)()
        ctx.call_on_close(obj["db"].close)
    return obj["db"]


def reports_errors(f):
    """Print domain errors in red and exit non-zero instead of dumping a traceback."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ConsistencyError as e:
            click.secho(f"Error: {e.args[0]}", fg="red", err=True)
            for reason in e.reasons:
                click.secho(f"  - {reason}", fg="red", err=True)
            raise SystemExit(1)
        except ExamsError as e:
            logger.debug(f"{type(e).__name__}: {str(e)}")
            click.secho(f"Error: {str(e)}", fg="red", err=True)
            raise SystemExit(1)

    return wrapper


def actor_options(f):
    f = click.option(
        "--role",
        "roles",
        multiple=True,
        help="Role held by the acting staff member (repeatable)",
    )(f)
    f = click.option("--staff-no", help="Staff number of the acting staff member")(f)
    return f


def resolve_actor(db: Session, staff_no: Optional[str], roles) -> Optional[Actor]:
    if not staff_no:
        return None
    return actor_from_lecturer(db, staff_no, roles)


def require_actor(db: Session, staff_no: Optional[str], roles) -> Actor:
    actor = resolve_actor(db, staff_no, roles)
    if actor is None:
        raise click.UsageError("--staff-no is required for this command")
    return actor


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    configure_from_env()
    ctx.ensure_object(dict)


@cli.command(name="init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create any missing tables."""
    db = get_db(ctx)
    Base.metadata.create_all(db.get_bind())
    click.secho("Database tables are up to date.", fg="green")


@cli.group()
def standing() -> None:
    """Academic standings."""


@standing.command(name="recompute")
@click.option("--session", required=True, help="Academic session (e.g. 2023/2024)")
@click.option("--semester", required=True, type=click.IntRange(1, 2))
@click.option("--level", help="Only this level (e.g. 300)")
@click.option("--reg-no", "reg_nos", multiple=True, help="Only these students")
@click.pass_context
@reports_errors
def standing_recompute(
    ctx: click.Context, session: str, semester: int, level: Optional[str], reg_nos
) -> None:
    db = get_db(ctx)
    recompute_term_standings(db, session, semester, level, reg_nos)


@standing.command(name="show")
@click.argument("reg_no")
@click.option("--session", required=True)
@click.option("--semester", required=True, type=click.IntRange(1, 2))
@click.option("--level", required=True)
@click.pass_context
@reports_errors
def standing_show(
    ctx: click.Context, reg_no: str, session: str, semester: int, level: str
) -> None:
    db = get_db(ctx)
    record = get_standing(db, reg_no, session, semester, level)
    if record is None:
        click.secho("No standing recorded for that term.", fg="yellow")
        return
    click.echo(f"{reg_no.upper()} {record.session} sem {record.semester} L{record.level}")
    click.echo(f"  GPA {record.gpa:.2f}  CGPA {record.cgpa:.2f}")
    click.echo(f"  TCC {record.tcc:g}  TCE {record.tce:g}  TPE {record.tpe:g}")
    click.echo(f"  CCC {record.ccc:g}  CCE {record.cce:g}  CPE {record.cpe:g}")
    for item in sorted(record.approvals, key=lambda a: a.stage):
        click.echo(
            f"  {item.stage}: {'approved' if item.approved else 'pending'}"
            f"{' (flagged)' if item.flagged else ''}"
        )


@cli.group()
def approvals() -> None:
    """Officer, HOD and dean sign-off."""


@approvals.command(name="pending")
@click.argument("stage", type=click.Choice(["ceo", "hod", "dean"]))
@click.option("--session")
@click.option("--semester", type=click.IntRange(1, 2))
@click.option("--level")
@actor_options
@click.pass_context
@reports_errors
def approvals_pending(
    ctx: click.Context, stage, session, semester, level, staff_no, roles
) -> None:
    db = get_db(ctx)
    actor = require_actor(db, staff_no, roles)
    show_pending_standings(db, actor, stage, session, semester, level)


@approvals.command(name="record")
@click.argument("stage", type=click.Choice(["ceo", "hod", "dean"]))
@click.argument("standing_ids", nargs=-1)
@click.option("--all", "approve_all", is_flag=True, help="Approve the whole pending queue")
@click.option("--revoke", is_flag=True, help="Withdraw the approval instead")
@click.option("--flag/--unflag", default=None, help="Set or clear the stage's flag")
@click.option("--note")
@click.option("--session")
@click.option("--semester", type=click.IntRange(1, 2))
@click.option("--level")
@actor_options
@click.pass_context
@reports_errors
def approvals_record(
    ctx: click.Context,
    stage,
    standing_ids,
    approve_all,
    revoke,
    flag,
    note,
    session,
    semester,
    level,
    staff_no,
    roles,
) -> None:
    db = get_db(ctx)
    actor = require_actor(db, staff_no, roles)
    if approve_all:
        approve_queue(db, actor, stage, session, semester, level, note=note)
        return
    if not standing_ids:
        raise click.UsageError("Give standing ids or --all")
    if revoke:
        approved = False
    elif flag is not None:
        approved = None
    else:
        approved = True
    approve_standings(db, actor, stage, standing_ids, approved, flag, note)


@cli.group(name="session")
def academic_session() -> None:
    """Academic session lifecycle."""


@academic_session.command(name="open")
@click.argument("title")
@click.option("--start-date", help="YYYY-MM-DD, defaults to today")
@click.option("--dean", required=True, help="Dean's staff number")
@click.option("--hod", required=True, help="HOD's staff number")
@click.option("--exam-officer", required=True, help="Exam officer's staff number")
@click.pass_context
@reports_errors
def session_open(ctx: click.Context, title, start_date, dean, hod, exam_officer) -> None:
    open_session(get_db(ctx), title, start_date, dean, hod, exam_officer)


@academic_session.command(name="list")
@click.pass_context
def session_list(ctx: click.Context) -> None:
    show_sessions(get_db(ctx))


@academic_session.command(name="current")
@click.pass_context
def session_current(ctx: click.Context) -> None:
    show_current_session(get_db(ctx))


@academic_session.command(name="readiness")
@click.argument("session")
@click.pass_context
@reports_errors
def session_readiness(ctx: click.Context, session: str) -> None:
    show_readiness(get_db(ctx), session)


@academic_session.command(name="close")
@click.argument("session")
@click.option("--end-date", help="YYYY-MM-DD, defaults to today")
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Students per bulk update (default from CLOSE_BATCH_SIZE)",
)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@reports_errors
def session_close(ctx: click.Context, session, end_date, batch_size, yes) -> None:
    """
    Close SESSION (id or title) and promote the cohort.

    Every standing of the session must carry the dean's approval. Levels
    100-300 move up one level; final-year students graduate, or get an
    extra year when a course's latest attempt is still an F.
    """
    if not yes:
        click.confirm(f"Close session {session}? This cannot be undone", abort=True)
    close_session_cmd(get_db(ctx), session, end_date, batch_size)


@cli.group()
def result() -> None:
    """Recorded course scores."""


@result.command(name="add")
@click.argument("reg_no")
@click.argument("course_id", type=int)
@click.option("--session", required=True)
@click.option("--semester", required=True, type=click.IntRange(1, 2))
@click.option("--level", required=True)
@click.option("--exam-date", required=True, help="YYYY-MM-DD")
@click.option("--ca", type=float)
@click.option("--exam", type=float)
@click.option("--total", "grand_total", type=float)
@click.option("--lecturer", help="Lecturer's staff number")
@actor_options
@click.pass_context
@reports_errors
def result_add(
    ctx: click.Context,
    reg_no,
    course_id,
    session,
    semester,
    level,
    exam_date,
    ca,
    exam,
    grand_total,
    lecturer,
    staff_no,
    roles,
) -> None:
    db = get_db(ctx)
    actor = resolve_actor(db, staff_no, roles)
    add_score(
        db, reg_no, course_id, session, semester, level, exam_date,
        ca=ca, exam=exam, grand_total=grand_total, lecturer=lecturer, actor=actor,
    )


@result.command(name="update")
@click.argument("result_id", type=int)
@click.option("--total", "grand_total", type=float)
@click.option("--grade", help="A-F, or AUTO to derive from the total")
@actor_options
@click.pass_context
@reports_errors
def result_update(ctx: click.Context, result_id, grand_total, grade, staff_no, roles) -> None:
    db = get_db(ctx)
    edit_score(db, result_id, grand_total, grade, resolve_actor(db, staff_no, roles))


@result.command(name="delete")
@click.argument("result_ids", nargs=-1, type=int, required=True)
@actor_options
@click.pass_context
@reports_errors
def result_delete(ctx: click.Context, result_ids, staff_no, roles) -> None:
    db = get_db(ctx)
    remove_scores(db, result_ids, resolve_actor(db, staff_no, roles))


@result.command(name="delete-course")
@click.argument("course_id", type=int)
@click.option("--session")
@click.option("--semester", type=click.IntRange(1, 2))
@click.option("--level")
@actor_options
@click.pass_context
@reports_errors
def result_delete_course(
    ctx: click.Context, course_id, session, semester, level, staff_no, roles
) -> None:
    db = get_db(ctx)
    remove_course_scores(
        db, course_id, session, semester, level, resolve_actor(db, staff_no, roles)
    )


@cli.group()
def moderation() -> None:
    """Controlled corrections of recorded scores."""


@moderation.command(name="submit")
@click.argument("result_id", type=int)
@click.argument("proposed_total", type=float)
@click.option("--proof", required=True, help="Reference to the supporting document")
@click.option("--authorized-by", required=True, help="Authorizing staff number")
@actor_options
@click.pass_context
@reports_errors
def moderation_submit(
    ctx: click.Context, result_id, proposed_total, proof, authorized_by, staff_no, roles
) -> None:
    db = get_db(ctx)
    moderation_cmd.submit(
        db, result_id, proposed_total, proof, authorized_by,
        resolve_actor(db, staff_no, roles),
    )


@moderation.command(name="approve")
@click.argument("result_id", type=int)
@actor_options
@click.pass_context
@reports_errors
def moderation_approve(ctx: click.Context, result_id, staff_no, roles) -> None:
    db = get_db(ctx)
    moderation_cmd.approve(db, result_id, resolve_actor(db, staff_no, roles))


@moderation.command(name="reject")
@click.argument("result_id", type=int)
@actor_options
@click.pass_context
@reports_errors
def moderation_reject(ctx: click.Context, result_id, staff_no, roles) -> None:
    db = get_db(ctx)
    moderation_cmd.reject(db, result_id, resolve_actor(db, staff_no, roles))


@cli.group()
def export() -> None:
    """Spreadsheet exports."""


@export.command(name="graduating-list")
@click.option("--session", required=True)
@click.option("--semester", required=True, type=click.IntRange(1, 2))
@click.option("--output-dir", default="exports", show_default=True)
@click.pass_context
@reports_errors
def export_graduating(ctx: click.Context, session, semester, output_dir) -> None:
    """Export the 400 level graduating list of a term to Excel."""
    export_graduating_list(get_db(ctx), session, semester, output_dir)


if __name__ == "__main__":
    cli()
