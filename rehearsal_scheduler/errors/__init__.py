"""Error taxonomy shared by the scheduler services and the HTTP layer.

Every error here is a recoverable outcome for the caller.  The API module
maps each class to an HTTP status; nothing below is treated as fatal.
"""

from http import HTTPStatus


class SchedulerError(Exception):
    """Base class for all expected failures."""

    status = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.message}


class ValidationError(SchedulerError):
    """Malformed or out-of-range input, addressed to a single field."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {'error': self.message, 'field': self.field}

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class InvalidPatternError(ValidationError):
    """A recurrence pattern that cannot produce any occurrence."""

    def __init__(self, message: str, field: str = 'recurringPattern'):
        super().__init__(field, message)


class UnknownMemberError(SchedulerError):
    """RSVP from a user without an attendance record."""

    status = HTTPStatus.FORBIDDEN

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} is not expected at this rehearsal")
        self.user_id = user_id


class AuthorizationError(SchedulerError):
    status = HTTPStatus.FORBIDDEN


class AuthenticationError(SchedulerError):
    status = HTTPStatus.UNAUTHORIZED


class NotFoundError(SchedulerError):
    status = HTTPStatus.NOT_FOUND

    def __init__(self, kind: str, identifier=None):
        if identifier is None:
            super().__init__(f"{kind} not found")
        else:
            super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ConflictError(SchedulerError):
    status = HTTPStatus.CONFLICT
