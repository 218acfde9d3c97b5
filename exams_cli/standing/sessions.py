import re
from dataclasses import dataclass

from exams_cli.errors import ValidationError

SESSION_PATTERN = re.compile(r"^(\d{4})/(\d{4})$")
SEMESTERS = (1, 2)
LEVELS = (100, 200, 300, 400)


@dataclass(frozen=True, order=True)
class SessionKey:
    """
    Sortable form of a session label such as "2023/2024".

    Chronological comparisons use `start_year`, never the label string.
    """

    start_year: int

    @property
    def label(self) -> str:
        return f"{self.start_year}/{self.start_year + 1}"

    @classmethod
    def parse(cls, label: str) -> "SessionKey":
        match = SESSION_PATTERN.match((label or "").strip())
        if not match:
            raise ValidationError(
                f"Session must look like 2023/2024, got {label!r}"
            )
        start, end = int(match.group(1)), int(match.group(2))
        if end != start + 1:
            raise ValidationError(
                f"Session {label!r} must span two consecutive years"
            )
        return cls(start)

    def __str__(self) -> str:
        return self.label


def session_year(label: str) -> int:
    return SessionKey.parse(label).start_year


def validate_semester(semester) -> int:
    try:
        value = int(semester)
    except (TypeError, ValueError):
        raise ValidationError(f"Semester must be 1 or 2, got {semester!r}")
    if value not in SEMESTERS:
        raise ValidationError(f"Semester must be 1 or 2, got {semester!r}")
    return value


def validate_level(level) -> int:
    """Accepts 100, "100" or "100L"."""
    text = str(level if level is not None else "").strip().upper().rstrip("L")
    try:
        value = int(text)
    except ValueError:
        raise ValidationError(f"Level must be one of {LEVELS}, got {level!r}")
    if value not in LEVELS:
        raise ValidationError(f"Level must be one of {LEVELS}, got {level!r}")
    return value
