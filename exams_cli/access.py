from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Literal, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from exams_cli.errors import AuthorizationError, NotFoundError
from exams_cli.models import Department, Lecturer

UserRole = Literal["ADMIN", "DEAN", "COLLEGE_OFFICER", "HOD", "EXAM_OFFICER"]

GLOBAL_ACCESS_ROLES: FrozenSet[str] = frozenset({"ADMIN", "DEAN", "COLLEGE_OFFICER"})
DEPARTMENT_SCOPED_ROLES: FrozenSet[str] = frozenset({"EXAM_OFFICER", "HOD"})
ALL_ROLES: FrozenSet[str] = GLOBAL_ACCESS_ROLES | DEPARTMENT_SCOPED_ROLES


@dataclass(frozen=True)
class Actor:
    """The acting user, as supplied by the identity layer."""

    name: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    staff_no: Optional[str] = None
    department_id: Optional[int] = None
    college_id: Optional[int] = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return "ADMIN" in self.roles

    @property
    def has_global_access(self) -> bool:
        return bool(self.roles & GLOBAL_ACCESS_ROLES)

    @property
    def requires_department_scope(self) -> bool:
        return not self.has_global_access and bool(self.roles & DEPARTMENT_SCOPED_ROLES)


def ensure_role(actor: Actor, role: str) -> None:
    if not (actor.has_role(role) or actor.is_admin):
        raise AuthorizationError(f"{actor.name or 'User'} does not hold the {role} role")


def require_department_assignment(actor: Actor) -> int:
    if actor.department_id is None:
        raise AuthorizationError("Your account is not assigned to a department.")
    return actor.department_id


def ensure_can_access_department(
    actor: Optional[Actor],
    department_id: Optional[int],
    college_id: Optional[int] = None,
) -> None:
    """Refuse department-scoped actors touching another department or college."""
    if actor is None or not actor.requires_department_scope:
        return

    own_department = require_department_assignment(actor)
    if department_id is not None and department_id != own_department:
        raise AuthorizationError("You are not authorized to manage this department.")

    if (
        college_id is not None
        and actor.college_id is not None
        and college_id != actor.college_id
    ):
        raise AuthorizationError("You are not authorized to manage this college.")


def actor_from_lecturer(db: Session, staff_no: str, roles: Iterable[str]) -> Actor:
    """Build an actor from a lecturer record, resolving department and college ids."""
    role_set = frozenset(r.strip().upper() for r in roles if r and r.strip())
    unknown = role_set - ALL_ROLES
    if unknown:
        raise AuthorizationError(f"Unknown role(s): {', '.join(sorted(unknown))}")

    lecturer = db.scalars(
        select(Lecturer).where(Lecturer.staff_no == staff_no.strip())
    ).first()
    if lecturer is None:
        raise NotFoundError(f"Lecturer with staff number '{staff_no}' not found")

    college_id = None
    if lecturer.department_id is not None:
        department = db.get(Department, lecturer.department_id)
        college_id = department.college_id if department else None

    return Actor(
        name=lecturer.full_name,
        roles=role_set,
        staff_no=lecturer.staff_no,
        department_id=lecturer.department_id,
        college_id=college_id,
    )
