from typing import Optional

import click
from sqlalchemy.orm import Session

from exams_cli.access import Actor
from exams_cli.models import Result
from exams_cli.results.moderation import (
    approve_moderation,
    reject_moderation,
    submit_moderation,
)


def _describe(result: Result) -> str:
    return (
        f"result {result.id}: {result.grand_total:g} ({result.grade}), "
        f"moderation {result.moderation_status}"
    )


def submit(
    db: Session,
    result_id: int,
    proposed_total: float,
    proof: str,
    authorized_by: str,
    actor: Optional[Actor] = None,
) -> Result:
    result = submit_moderation(db, result_id, proposed_total, proof, authorized_by, actor)
    click.secho(
        f"Moderation submitted: {result.moderation_original_total:g} -> "
        f"{result.moderation_pending_total:g} awaiting approval",
        fg="cyan",
    )
    return result


def approve(db: Session, result_id: int, actor: Optional[Actor] = None) -> Result:
    result = approve_moderation(db, result_id, actor)
    click.secho(f"Moderation approved, {_describe(result)}", fg="green")
    return result


def reject(db: Session, result_id: int, actor: Optional[Actor] = None) -> Result:
    result = reject_moderation(db, result_id, actor)
    click.secho(f"Moderation rejected, {_describe(result)}", fg="yellow")
    return result
