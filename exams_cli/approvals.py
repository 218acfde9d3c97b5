"""
Sign-off chain for academic standings.

Each standing is approved in order by the department's exam officer
("ceo"), the head of department ("hod") and the dean ("dean"). Every stage
lives in its own StandingApproval row, so writing one stage never touches
another stage or the standing's metrics.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Union

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session, joinedload, selectinload

from exams_cli.access import (
    Actor,
    ensure_can_access_department,
    ensure_role,
    require_department_assignment,
)
from exams_cli.errors import (
    ApprovalOrderError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from exams_cli.models import (
    APPROVAL_STAGES,
    AcademicStanding,
    Course,
    CourseRegistration,
    Result,
    StandingApproval,
    Student,
)
from exams_cli.standing import StandingKey
from exams_cli.standing.calculator import CumulativeSnapshot, StandingMetrics
from exams_cli.standing.sessions import session_year, validate_level, validate_semester
from exams_cli.utils.logging_config import get_audit_logger, get_logger

logger = get_logger(__name__)

STAGE_ROLES: Dict[str, str] = {
    "ceo": "COLLEGE_OFFICER",
    "hod": "HOD",
    "dean": "DEAN",
}

STAGE_TITLES: Dict[str, str] = {
    "ceo": "Exam Officer",
    "hod": "HOD",
    "dean": "Dean",
}

QUEUE_LIMIT = 100


@dataclass(frozen=True)
class CourseLine:
    code: str
    title: str
    unit: int
    grand_total: Optional[float]
    grade: str
    registered: bool
    scored: bool


@dataclass(frozen=True)
class ApprovalView:
    stage: str
    approved: bool = False
    flagged: bool = False
    approver_name: str = ""
    note: str = ""
    updated_at: Optional[datetime] = None


@dataclass
class StandingQueueItem:
    standing_id: str
    student_id: int
    reg_no: str
    student_name: str
    department_id: Optional[int]
    session: str
    semester: int
    level: int
    metrics: StandingMetrics
    previous: CumulativeSnapshot
    approvals: Dict[str, ApprovalView] = field(default_factory=dict)
    courses: List[CourseLine] = field(default_factory=list)

    @property
    def cumulative(self) -> CumulativeSnapshot:
        return self.metrics.cumulative()


def validate_stage(stage: str) -> str:
    value = (stage or "").strip().lower()
    if value not in APPROVAL_STAGES:
        raise ValidationError(
            f"Approval stage must be one of {', '.join(APPROVAL_STAGES)}, got {stage!r}"
        )
    return value


def _approved(stage: str):
    return exists().where(
        StandingApproval.standing_id == AcademicStanding.id,
        StandingApproval.stage == stage,
        StandingApproval.approved.is_(True),
    )


def _queue_condition(stage: str):
    earlier = APPROVAL_STAGES[: APPROVAL_STAGES.index(stage)]
    return and_(*[_approved(s) for s in earlier], ~_approved(stage))


def course_lines(db: Session, key: StandingKey) -> List[CourseLine]:
    """
    The courses behind a standing: every registered course and every scored
    one. A registered course without a score is shown as an F.
    """
    year = key.session_year
    registered = set(
        db.scalars(
            select(CourseRegistration.course_id).where(
                CourseRegistration.student_id == key.student_id,
                CourseRegistration.session_year == year,
                CourseRegistration.semester == key.semester,
                CourseRegistration.level == key.level,
            )
        ).all()
    )
    scores = {
        row.course_id: row
        for row in db.execute(
            select(Result.course_id, Result.grand_total, Result.grade).where(
                Result.student_id == key.student_id,
                Result.session_year == year,
                Result.semester == key.semester,
                Result.level == key.level,
            )
        )
    }

    course_ids = registered | scores.keys()
    if not course_ids:
        return []
    courses = db.scalars(select(Course).where(Course.id.in_(course_ids))).all()

    lines = []
    for course in sorted(courses, key=lambda c: c.code):
        score = scores.get(course.id)
        lines.append(
            CourseLine(
                code=course.code,
                title=course.title,
                unit=course.unit,
                grand_total=score.grand_total if score else None,
                grade=(score.grade if score else "F") or "F",
                registered=course.id in registered,
                scored=score is not None,
            )
        )
    return lines


def _approval_views(standing: AcademicStanding) -> Dict[str, ApprovalView]:
    views = {}
    for stage in APPROVAL_STAGES:
        item = standing.approval(stage)
        if item is None:
            views[stage] = ApprovalView(stage=stage)
            continue
        views[stage] = ApprovalView(
            stage=stage,
            approved=item.approved,
            flagged=item.flagged,
            approver_name=item.approver_name,
            note=item.note,
            updated_at=item.updated_at,
        )
    return views


def to_queue_item(db: Session, standing: AcademicStanding) -> StandingQueueItem:
    student = standing.student
    key = StandingKey(
        standing.student_id, standing.session, standing.semester, standing.level
    )
    return StandingQueueItem(
        standing_id=standing.id,
        student_id=standing.student_id,
        reg_no=student.reg_no,
        student_name=student.full_name,
        department_id=standing.department_id,
        session=standing.session,
        semester=standing.semester,
        level=standing.level,
        metrics=StandingMetrics(
            tcc=standing.tcc,
            tce=standing.tce,
            tpe=standing.tpe,
            gpa=standing.gpa,
            ccc=standing.ccc,
            cce=standing.cce,
            cpe=standing.cpe,
            cgpa=standing.cgpa,
        ),
        previous=CumulativeSnapshot(
            ccc=standing.previous_ccc,
            cce=standing.previous_cce,
            cpe=standing.previous_cpe,
            cgpa=standing.previous_cgpa,
        ),
        approvals=_approval_views(standing),
        courses=course_lines(db, key),
    )


def pending_standings(
    db: Session,
    actor: Actor,
    stage: str,
    session: Optional[str] = None,
    semester: Optional[int] = None,
    level: Optional[Union[int, str]] = None,
) -> List[StandingQueueItem]:
    """
    Standings waiting for `stage`, with everything an approver needs to
    review them.

    The exam officer queue is complete; HOD and dean queues return at most
    QUEUE_LIMIT items, most recently updated first. HOD queues only ever
    contain the HOD's own department.
    """
    stage = validate_stage(stage)
    ensure_role(actor, STAGE_ROLES[stage])

    stmt = (
        select(AcademicStanding)
        .join(Student, Student.id == AcademicStanding.student_id)
        .options(
            joinedload(AcademicStanding.student),
            selectinload(AcademicStanding.approvals),
        )
        .where(_queue_condition(stage))
    )

    if stage == "hod" and not actor.is_admin:
        department_id = require_department_assignment(actor)
        stmt = stmt.where(AcademicStanding.department_id == department_id)
    elif actor.requires_department_scope:
        stmt = stmt.where(
            AcademicStanding.department_id == require_department_assignment(actor)
        )

    if session:
        stmt = stmt.where(AcademicStanding.session_year == session_year(session))
    if semester is not None:
        stmt = stmt.where(AcademicStanding.semester == validate_semester(semester))
    if level is not None:
        stmt = stmt.where(AcademicStanding.level == validate_level(level))

    if stage == "ceo":
        stmt = stmt.order_by(
            AcademicStanding.session_year,
            AcademicStanding.semester,
            AcademicStanding.level,
            Student.reg_no,
        )
    else:
        stmt = stmt.order_by(
            AcademicStanding.last_updated.desc(), AcademicStanding.id
        ).limit(QUEUE_LIMIT)

    standings = db.scalars(stmt).unique().all()
    return [to_queue_item(db, s) for s in standings]


def get_standing(
    db: Session,
    student: Union[int, str],
    session: str,
    semester: Union[int, str],
    level: Union[int, str],
) -> Optional[AcademicStanding]:
    """Look a standing up by student id or registration number and term."""
    if isinstance(student, str):
        student_id = db.scalar(
            select(Student.id).where(Student.reg_no == student.strip().upper())
        )
        if student_id is None:
            raise NotFoundError(f"Student with reg no '{student}' not found")
    else:
        student_id = student

    key = StandingKey.build(student_id, session, semester, level)
    return db.scalars(
        select(AcademicStanding)
        .options(selectinload(AcademicStanding.approvals))
        .where(
            AcademicStanding.student_id == key.student_id,
            AcademicStanding.session_year == key.session_year,
            AcademicStanding.semester == key.semester,
            AcademicStanding.level == key.level,
        )
    ).first()


def _check_order(standing: AcademicStanding, stage: str, approved: bool) -> None:
    position = APPROVAL_STAGES.index(stage)
    if approved:
        missing = [
            s for s in APPROVAL_STAGES[:position] if not standing.is_approved(s)
        ]
        if missing:
            raise ApprovalOrderError(
                f"{STAGE_TITLES[stage]} approval requires prior approval by "
                + ", ".join(STAGE_TITLES[s] for s in missing)
            )
    else:
        blocking = [
            s for s in APPROVAL_STAGES[position + 1 :] if standing.is_approved(s)
        ]
        if blocking:
            raise ApprovalOrderError(
                f"Cannot revoke {STAGE_TITLES[stage]} approval while "
                + ", ".join(STAGE_TITLES[s] for s in blocking)
                + " approval stands"
            )


def record_approval(
    db: Session,
    actor: Actor,
    standing_id: str,
    stage: str,
    approved: Optional[bool] = None,
    flagged: Optional[bool] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> StandingApproval:
    """
    Write one stage of a standing's sign-off.

    Arguments left as None keep their stored value. Approving requires every
    earlier stage approved; revoking requires every later stage unapproved.
    Flagging is independent of approval.
    """
    stage = validate_stage(stage)
    if approved is None and flagged is None and note is None:
        raise ValidationError("Nothing to record: give approved, flagged or a note")
    ensure_role(actor, STAGE_ROLES[stage])

    standing = db.scalars(
        select(AcademicStanding)
        .options(selectinload(AcademicStanding.approvals))
        .where(AcademicStanding.id == standing_id)
        .with_for_update()
    ).first()
    if standing is None:
        raise NotFoundError(f"Standing {standing_id} not found")

    if stage == "hod" and not actor.is_admin:
        if require_department_assignment(actor) != standing.department_id:
            raise AuthorizationError(
                "You can only approve standings from your own department"
            )
    else:
        ensure_can_access_department(actor, standing.department_id)

    item = standing.approval(stage)
    if item is None:
        item = StandingApproval(stage=stage)
        standing.approvals.append(item)

    if approved is not None and approved != item.approved:
        _check_order(standing, stage, approved)
        item.approved = approved
    if flagged is not None:
        item.flagged = flagged
    if note is not None:
        item.note = note.strip()

    item.approver_name = actor.name
    item.approver_staff_no = actor.staff_no
    item.approver_department_id = actor.department_id
    item.approver_college_id = actor.college_id
    item.updated_at = now or datetime.utcnow()
    db.commit()

    message = (
        f"{STAGE_TITLES[stage]} sign-off on standing {standing.id} by {actor.name} "
        f"({actor.staff_no or '-'}): approved={item.approved} flagged={item.flagged}"
    )
    logger.info(message)
    get_audit_logger().info(message)
    return item


def flag_standing(
    db: Session,
    actor: Actor,
    standing_id: str,
    stage: str,
    flagged: bool = True,
    note: Optional[str] = None,
) -> StandingApproval:
    return record_approval(db, actor, standing_id, stage, flagged=flagged, note=note)
