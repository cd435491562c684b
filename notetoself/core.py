"""Core types used across all modules."""

from enum import StrEnum

from pydantic import BaseModel


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Diag(BaseModel):
    """A structured diagnostic message."""

    severity: Severity
    code: str
    message: str
    hint: str | None = None


class NoteToSelfError(Exception):
    """Base error. Carries a stable code so callers can map it without string matching."""

    code = "ERROR"

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_diag(self) -> Diag:
        return Diag(severity=Severity.ERROR, code=self.code, message=self.message, hint=self.hint)


class NotFoundError(NoteToSelfError):
    code = "NOT_FOUND"


class AlreadyExistsError(NoteToSelfError):
    code = "ALREADY_EXISTS"


class ValidationError(NoteToSelfError):
    code = "INVALID"


class ForbiddenError(NoteToSelfError):
    code = "FORBIDDEN"

    def __init__(self, message: str, *, hint: str | None = None, redirect: str = "/") -> None:
        super().__init__(message, hint=hint)
        self.redirect = redirect


class StoreError(NoteToSelfError):
    """Connectivity or constraint failure in the backing database.

    ``retryable`` is set for pool exhaustion and timeouts, where the same call
    may succeed later.
    """

    code = "STORE_ERROR"

    def __init__(self, message: str, *, hint: str | None = None, retryable: bool = False) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
