from typing import Iterable, List, Optional, Union

import click
from sqlalchemy.orm import Session

from exams_cli.access import Actor
from exams_cli.approvals import (
    STAGE_TITLES,
    StandingQueueItem,
    pending_standings,
    record_approval,
)
from exams_cli.errors import ExamsError
from exams_cli.institutions import InstitutionDirectory


def _print_item(index: int, total: int, item: StandingQueueItem, names: dict) -> None:
    m = item.metrics
    p = item.previous
    department = names.get(item.department_id, "-")
    click.echo()
    click.echo("-" * 40)
    click.echo(
        f"{index}/{total}] {item.reg_no} {item.student_name} ({department}) "
        f"{item.session} sem {item.semester} L{item.level}"
    )
    click.echo(f"  id: {item.standing_id}")
    click.echo(f"  current:    TCC {m.tcc:g}  TCE {m.tce:g}  TPE {m.tpe:g}  GPA {m.gpa:.2f}")
    click.echo(f"  previous:   CCC {p.ccc:g}  CCE {p.cce:g}  CPE {p.cpe:g}  CGPA {p.cgpa:.2f}")
    click.echo(f"  cumulative: CCC {m.ccc:g}  CCE {m.cce:g}  CPE {m.cpe:g}  CGPA {m.cgpa:.2f}")
    for line in item.courses:
        score = "-" if line.grand_total is None else f"{line.grand_total:g}"
        note = "" if line.scored else "  (no result)"
        click.echo(f"    {line.code:<10} {line.unit:>2}u  {score:>5}  {line.grade}{note}")
    marks = []
    for stage, view in item.approvals.items():
        state = "approved" if view.approved else "pending"
        if view.flagged:
            state += ", flagged"
        marks.append(f"{STAGE_TITLES[stage]}: {state}")
    click.echo("  " + " | ".join(marks))


def show_pending_standings(
    db: Session,
    actor: Actor,
    stage: str,
    session: Optional[str] = None,
    semester: Optional[int] = None,
    level: Optional[Union[int, str]] = None,
) -> List[StandingQueueItem]:
    items = pending_standings(db, actor, stage, session, semester, level)
    if not items:
        click.secho(f"No standings waiting for {STAGE_TITLES.get(stage, stage)} approval.", fg="yellow")
        return items

    names = InstitutionDirectory.department_names(db, (i.department_id for i in items))
    for index, item in enumerate(items, 1):
        _print_item(index, len(items), item, names)
    click.echo()
    click.secho(f"{len(items)} standing(s) pending", fg="cyan")
    return items


def approve_standings(
    db: Session,
    actor: Actor,
    stage: str,
    standing_ids: Iterable[str],
    approved: Optional[bool] = True,
    flagged: Optional[bool] = None,
    note: Optional[str] = None,
) -> int:
    """Record a stage decision on each standing, reporting failures one by one."""
    ids = list(dict.fromkeys(standing_ids))
    if not ids:
        click.secho("No standings selected.", fg="yellow")
        return 0

    done = 0
    for standing_id in ids:
        try:
            record_approval(db, actor, standing_id, stage, approved, flagged, note)
            done += 1
            click.echo(f"{standing_id}: recorded")
        except ExamsError as e:
            db.rollback()
            click.secho(f"{standing_id}: {str(e)}", fg="red")

    colour = "green" if done == len(ids) else "yellow"
    click.secho(f"Recorded {done}/{len(ids)} {STAGE_TITLES.get(stage, stage)} decision(s)", fg=colour)
    return done


def approve_queue(
    db: Session,
    actor: Actor,
    stage: str,
    session: Optional[str] = None,
    semester: Optional[int] = None,
    level: Optional[Union[int, str]] = None,
    note: Optional[str] = None,
) -> int:
    """Approve everything currently in the actor's queue for a stage."""
    items = pending_standings(db, actor, stage, session, semester, level)
    return approve_standings(
        db, actor, stage, [i.standing_id for i in items], approved=True, note=note
    )
