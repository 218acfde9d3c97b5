from dataclasses import dataclass

from exams_cli.errors import ValidationError
from exams_cli.standing.sessions import (
    SessionKey,
    validate_level,
    validate_semester,
)


@dataclass(frozen=True, order=True)
class StandingKey:
    """Identifies one standing: (student, session, semester, level)."""

    student_id: int
    session: str
    semester: int
    level: int

    @property
    def session_year(self) -> int:
        return SessionKey.parse(self.session).start_year

    @classmethod
    def build(cls, student_id, session, semester, level) -> "StandingKey":
        if student_id is None:
            raise ValidationError("student is required")
        if not session:
            raise ValidationError("session is required")
        if semester is None or semester == "":
            raise ValidationError("semester is required")
        if level is None or level == "":
            raise ValidationError("level is required")
        return cls(
            student_id=int(student_id),
            session=SessionKey.parse(session).label,
            semester=validate_semester(semester),
            level=validate_level(level),
        )

    def __str__(self) -> str:
        return f"student={self.student_id} {self.session} sem {self.semester} L{self.level}"
