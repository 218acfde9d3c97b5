"""
Moderation of recorded scores.

A moderation is a controlled correction of a score that is already on
record. It moves through three states:

    none -> pending           submit: proposed total, proof and authorizer
    pending -> approved       approve: the proposed total is applied
    pending -> none           reject: the proposal is dropped
    approved -> none          reject: the original total and grade return

Approving or unwinding changes the stored total, so both refresh the
student's standing for the term.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from exams_cli.access import Actor
from exams_cli.errors import ValidationError
from exams_cli.grading import TOTAL_MAX, grade_from_score
from exams_cli.institutions import InstitutionDirectory, default_directory
from exams_cli.models import Result
from exams_cli.results.service import (
    _ensure_course_scope,
    get_result,
    refresh_standings,
    standing_key_for,
)
from exams_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _clear_moderation(result: Result) -> None:
    result.moderated = False
    result.moderation_status = "none"
    result.moderation_pending_total = None
    result.moderation_original_total = None
    result.moderation_original_grade = None
    result.moderation_approved_at = None
    result.moderation_proof = ""
    result.moderation_authorized_by = ""


def submit_moderation(
    db: Session,
    result_id: int,
    proposed_total: float,
    proof: str,
    authorized_by: str,
    actor: Optional[Actor] = None,
) -> Result:
    """
    Propose a corrected grand total for a result.

    Resubmitting while a request is pending replaces the proposal but keeps
    the original snapshot taken by the first submission.
    """
    try:
        proposed = float(proposed_total)
    except (TypeError, ValueError):
        raise ValidationError("Proposed grand total must be a number")
    if not 0 <= proposed <= TOTAL_MAX:
        raise ValidationError(f"Proposed grand total must be between 0 and {TOTAL_MAX}")
    if not _clean(proof) or not _clean(authorized_by):
        raise ValidationError(
            "Provide proof and the authorizing staff number to submit moderation."
        )

    result = get_result(db, result_id)
    _ensure_course_scope(db, actor, result.course_id)

    if result.moderation_status != "pending":
        result.moderation_original_total = result.grand_total
        result.moderation_original_grade = result.grade

    result.moderation_pending_total = proposed
    result.moderation_status = "pending"
    result.moderated = False
    result.moderation_approved_at = None
    result.moderation_proof = _clean(proof)
    result.moderation_authorized_by = _clean(authorized_by)
    db.commit()

    logger.info(
        f"Moderation submitted for result {result.id}: "
        f"{result.moderation_original_total} -> {proposed} "
        f"(authorized by {result.moderation_authorized_by})"
    )
    return result


def approve_moderation(
    db: Session,
    result_id: int,
    actor: Optional[Actor] = None,
    directory: InstitutionDirectory = default_directory,
    now: Optional[datetime] = None,
) -> Result:
    result = get_result(db, result_id)
    _ensure_course_scope(db, actor, result.course_id)

    if result.moderation_status != "pending":
        raise ValidationError("No pending moderation request to approve.")
    if result.moderation_pending_total is None:
        raise ValidationError("Pending moderation is missing a proposed grand total.")
    if not _clean(result.moderation_proof) or not _clean(result.moderation_authorized_by):
        raise ValidationError(
            "Moderation proof and authorizer must be recorded before approval."
        )

    result.grand_total = result.moderation_pending_total
    result.grade = grade_from_score(result.grand_total)
    result.moderation_status = "approved"
    result.moderated = True
    result.moderation_approved_at = now or datetime.utcnow()
    result.moderation_pending_total = None

    key = standing_key_for(result)
    db.commit()
    logger.info(
        f"Moderation approved for result {result.id}: now {result.grand_total} ({result.grade})"
    )

    refresh_standings(db, [key], directory)
    return result


def reject_moderation(
    db: Session,
    result_id: int,
    actor: Optional[Actor] = None,
    directory: InstitutionDirectory = default_directory,
) -> Result:
    """
    Drop a pending proposal, or unwind an approved moderation by restoring
    the score that was on record before it.
    """
    result = get_result(db, result_id)
    _ensure_course_scope(db, actor, result.course_id)

    if result.moderation_status == "pending":
        _clear_moderation(result)
        db.commit()
        logger.info(f"Pending moderation rejected for result {result.id}")
        return result

    if result.moderation_status == "approved":
        original_total = result.moderation_original_total
        if original_total is None:
            raise ValidationError(
                "Cannot unapprove because the original score is unavailable."
            )
        original_grade = result.moderation_original_grade or grade_from_score(
            original_total
        )

        result.grand_total = original_total
        result.grade = original_grade
        _clear_moderation(result)

        key = standing_key_for(result)
        db.commit()
        logger.info(
            f"Approved moderation unwound for result {result.id}: "
            f"restored {original_total} ({original_grade})"
        )

        refresh_standings(db, [key], directory)
        return result

    raise ValidationError("There is no moderation to reject on this result.")
