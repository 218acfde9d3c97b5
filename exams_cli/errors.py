from typing import Iterable, List, Optional


class ExamsError(Exception):
    """Base class for errors raised by the exam office services."""


class ValidationError(ExamsError):
    """Malformed input. Nothing has been written when this is raised."""


class NotFoundError(ExamsError):
    """An unknown student, course, lecturer, session or record was referenced."""


class AuthorizationError(ExamsError):
    """The acting user's role or department scope does not allow the operation."""


class ApprovalOrderError(ValidationError):
    """An approval write would break the officer -> HOD -> dean order."""


class ConsistencyError(ExamsError):
    """
    Preconditions of an operation are not met.

    Carries the list of blocking reasons so the caller can resolve each one.
    """

    def __init__(self, message: str, reasons: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.reasons: List[str] = list(reasons or [])

    def __str__(self) -> str:
        base = super().__str__()
        if not self.reasons:
            return base
        return f"{base}: {'; '.join(self.reasons)}"


class TransactionFailure(ExamsError):
    """A multi-write transaction aborted; all of its writes were rolled back."""
