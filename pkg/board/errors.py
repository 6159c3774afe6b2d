"""
Store error taxonomy.

Every failure coming back from a project store is folded into one of three
kinds. The kind only picks the message shown to the user; recovery (rollback)
is the same for all of them.
"""
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Client-visible failure classes."""
    VALIDATION_REJECTED = "validation_rejected"   # Value refused by a constraint
    PERMISSION_DENIED = "permission_denied"       # Caller may not touch the record
    UNCLASSIFIED = "unclassified"                 # Network, timeout, anything else


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


class StoreError(Exception):
    """Raised by project stores when a read or write fails."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNCLASSIFIED,
        code: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.status = status

    def __repr__(self) -> str:
        return f"StoreError(kind={self.kind.value}, code={self.code}, message={self.message!r})"

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value, "code": self.code}


# Postgres SQLSTATE codes surfaced by the managed backend
VALIDATION_CODES = {
    "23514",  # check_violation
    "23503",  # foreign_key_violation
    "23502",  # not_null_violation
    "23505",  # unique_violation
    "22P02",  # invalid_text_representation
}
PERMISSION_CODES = {
    "42501",  # insufficient_privilege (row level security)
}


def kind_for(status: Optional[int] = None, code: Optional[str] = None) -> ErrorKind:
    """Classify a backend failure from its HTTP status and/or error code."""
    if code in PERMISSION_CODES or status in (401, 403):
        return ErrorKind.PERMISSION_DENIED
    if code in VALIDATION_CODES or status in (400, 422):
        return ErrorKind.VALIDATION_REJECTED
    return ErrorKind.UNCLASSIFIED


def classify_error(exc: BaseException) -> StoreError:
    """Return exc as a StoreError; anything foreign becomes UNCLASSIFIED."""
    if isinstance(exc, StoreError):
        return exc
    return StoreError(str(exc) or exc.__class__.__name__, ErrorKind.UNCLASSIFIED)


def user_message(error: StoreError, lane_name: str) -> str:
    """User-visible text for a failed lane update."""
    if error.kind == ErrorKind.VALIDATION_REJECTED:
        return f"Status '{lane_name}' is not valid for this item."
    if error.kind == ErrorKind.PERMISSION_DENIED:
        return "You do not have permission to update this item."
    return "Failed to update status, please try again."
