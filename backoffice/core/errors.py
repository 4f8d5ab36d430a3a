"""Error taxonomy shared by the ticket and audit services.

Services raise a ``ServiceError`` subclass; the HTTP boundary maps its
``kind`` onto a status code so the core stays transport agnostic.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    ILLEGAL_TRANSITION = "illegal_transition"


class ServiceError(RuntimeError):
    """Base error for service level failures."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Raised when input is blank, malformed or references an unusable record."""

    kind = ErrorKind.VALIDATION


class NotFoundError(ServiceError):
    """Raised when a referenced ticket or audit entry does not exist."""

    kind = ErrorKind.NOT_FOUND


class ForbiddenError(ServiceError):
    """Raised when the caller is known but may not act on the resource."""

    kind = ErrorKind.FORBIDDEN


class IllegalTransitionError(ServiceError):
    """Raised when a ticket transition violates the state machine."""

    kind = ErrorKind.ILLEGAL_TRANSITION


class UnavailableDiffError(ValueError):
    """Snapshot JSON could not be diffed. Never leaves the diff engine."""


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.ILLEGAL_TRANSITION: 400,
}
