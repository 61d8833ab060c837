"""Custom exceptions for SettleUp."""

from enum import Enum


class ErrorKind(str, Enum):
    """Structured error kinds, rendered to messages by the presentation layer."""

    INVALID_ARGUMENT = "invalid_argument"
    INVARIANT_VIOLATION = "invariant_violation"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"


class SettleUpError(Exception):
    """Base exception for all SettleUp errors."""

    kind: ErrorKind = ErrorKind.PERSISTENCE
    sentinel: int = -5


class ConfigurationError(SettleUpError):
    """Raised when configuration is invalid or missing."""

    kind = ErrorKind.CONFIGURATION


class InvalidArgumentError(SettleUpError, ValueError):
    """Raised for malformed numeric input (NaN, infinite, negative, non-integer)."""

    kind = ErrorKind.INVALID_ARGUMENT


class InvariantViolationError(SettleUpError, ValueError):
    """Raised when inputs break a split invariant (e.g. proxy beneficiary is the payer)."""

    kind = ErrorKind.INVARIANT_VIOLATION


class SessionNotFoundError(SettleUpError):
    """Raised when a settlement session or entry does not exist."""

    kind = ErrorKind.NOT_FOUND
    sentinel = -1


class AuthorizationError(SettleUpError):
    """Raised when the requesting user is not a member of the group."""

    kind = ErrorKind.AUTHORIZATION
    sentinel = -2

    def __init__(self, group_id: str, user_id: str, message: str | None = None):
        self.group_id = group_id
        self.user_id = user_id
        super().__init__(
            message or f"User {user_id} is not a member of group {group_id}"
        )


class ConflictError(SettleUpError):
    """Raised when a session is not in the status an operation requires."""

    kind = ErrorKind.CONFLICT
    sentinel = -3

    def __init__(
        self, session_id: str, status: str, expected: str, message: str | None = None
    ):
        self.session_id = session_id
        self.status = status
        self.expected = expected
        super().__init__(
            message or f"Session {session_id} is '{status}', expected '{expected}'"
        )


class NothingToConfirmError(SettleUpError):
    """Raised when confirming a draft that has no settleable entries."""

    kind = ErrorKind.CONFLICT
    sentinel = -4


class PersistenceError(SettleUpError):
    """Raised when the backing store fails to read or apply changes."""

    kind = ErrorKind.PERSISTENCE
    sentinel = -5
