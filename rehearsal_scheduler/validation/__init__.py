"""Payload validation in front of every write.

The document models in :mod:`rehearsal_scheduler.schemas` carry the field
constraints; this module runs them and reduces pydantic's error list to the
first violated field, reported as a dotted camelCase path such as
``venue.name`` or ``recurringPattern.daysOfWeek``.
"""

from typing import Type, TypeVar

import pydantic

from rehearsal_scheduler.errors import ValidationError
from rehearsal_scheduler.schemas import (
    Document,
    ProfileUpdate,
    Rehearsal,
    UserCreate,
)

D = TypeVar('D', bound=Document)


def _field_path(loc: tuple) -> str:
    parts = [str(part) for part in loc if isinstance(part, str)]
    return '.'.join(parts) or '__root__'


def _message(error: dict) -> str:
    # Messages raised by our own validators come through as "Value error, ..."
    ctx_error = (error.get('ctx') or {}).get('error')
    if error.get('type') == 'value_error' and ctx_error is not None:
        return str(ctx_error)
    return error['msg']


def field_error(error: dict) -> ValidationError:
    """Turn one pydantic error entry into a :class:`ValidationError`."""
    return ValidationError(_field_path(error['loc']), _message(error))


def first_error(exc: pydantic.ValidationError) -> ValidationError:
    return field_error(exc.errors()[0])


def validate_document(model: Type[D], payload: dict) -> D:
    """Validate ``payload`` as ``model`` or raise the first field error."""
    if not isinstance(payload, dict):
        raise ValidationError('__root__', 'Payload must be a JSON object')
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise first_error(exc) from None


def validate_rehearsal(payload: dict) -> Rehearsal:
    rehearsal = validate_document(Rehearsal, payload)
    if rehearsal.is_recurring and rehearsal.recurring_pattern is None:
        raise ValidationError('recurringPattern', 'Recurring rehearsals need a recurrence pattern')
    return rehearsal


def validate_registration(payload: dict) -> UserCreate:
    return validate_document(UserCreate, payload)


def validate_profile_update(payload: dict) -> ProfileUpdate:
    return validate_document(ProfileUpdate, payload)


MIN_PASSWORD_LENGTH = 8


def validate_password(password, field: str = 'password') -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(field, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password
