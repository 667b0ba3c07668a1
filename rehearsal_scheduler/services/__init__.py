"""
rehearsal_scheduler.services
============================

Use cases behind the HTTP API.  Each function takes an open SQLAlchemy
session plus the id of the requesting user, performs one operation and
returns domain objects.  Failures are raised as the exceptions of
:mod:`rehearsal_scheduler.errors`; translating them to HTTP responses is
left to the API layer.

The two entry points the rest of the system is built around are
:func:`save_rehearsal` (create or update a rehearsal from a full payload)
and :func:`record_rsvp` (a member answers for one rehearsal).
"""

import datetime
import logging
import time

from sqlalchemy.orm import Session

from rehearsal_scheduler.attendance import AttendanceTracker, attendance_counts
from rehearsal_scheduler.auth import (
    decode_access_token,
    decode_refresh_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    issue_tokens,
    prepare_user_for_write,
    verify_password,
)
from rehearsal_scheduler.db import BandDAO, RehearsalDAO, UserDAO
from rehearsal_scheduler.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from rehearsal_scheduler.permissions import is_band_admin, is_member, require_modify
from rehearsal_scheduler.recurrence import Occurrence, expand, expand_rehearsal
from rehearsal_scheduler.schemas import Band, BandMember, BandRole, Rehearsal, User, duration_minutes
from rehearsal_scheduler.utils import clean_text, utcnow
from rehearsal_scheduler.validation import (
    validate_document,
    validate_password,
    validate_profile_update,
    validate_registration,
    validate_rehearsal,
)

logger = logging.getLogger(__name__)


#############################
# Rehearsals
#############################


def _check_series(rehearsal: Rehearsal) -> None:
    """Make sure a recurring rehearsal produces at least one occurrence."""
    if rehearsal.is_recurring:
        expand(rehearsal.recurring_pattern, rehearsal.start_time, rehearsal.end_time, limit=1)


def _member_ids(bands: BandDAO, band_id: int) -> list[int]:
    members = bands.get_members(band_id)
    if members is None:
        raise NotFoundError('Band', band_id)
    return [member.user_id for member in members]


def save_rehearsal(session: Session, payload: dict, user_id: int, rehearsal_id: int | None = None) -> Rehearsal:
    """Create a rehearsal, or update ``rehearsal_id`` from a full payload.

    Creation requires membership of the target band and sets the requester
    as creator; every band member starts with a pending attendance record.
    Updates require the creator or a band admin and keep identity, creator,
    attendance and cancellation state.  Nothing is written unless the whole
    payload is valid.
    """
    rehearsals = RehearsalDAO(session)
    bands = BandDAO(session)

    if rehearsal_id is None:
        candidate = validate_rehearsal(payload)
        member_ids = _member_ids(bands, candidate.band_id)
        if user_id not in member_ids:
            raise AuthorizationError('Only band members can schedule rehearsals')
        _check_series(candidate)
        rehearsal = candidate.model_copy(update={
            'created_by': user_id,
            'attendance': [],
            'is_cancelled': False,
            'cancel_reason': None,
            'reminder_sent_at': None,
        })
        AttendanceTracker(rehearsal.attendance).initialize(member_ids)
        rehearsal = rehearsals.create(rehearsal)
        logger.info("Rehearsal %s created in band %s by user %s", rehearsal.id, rehearsal.band_id, user_id)
        return rehearsal

    existing = rehearsals.get(rehearsal_id)
    if existing is None:
        raise NotFoundError('Rehearsal', rehearsal_id)
    require_modify(user_id, existing, bands)
    if isinstance(payload, dict):
        payload = {'bandId': existing.band_id, **payload}
    candidate = validate_rehearsal(payload)
    if candidate.band_id != existing.band_id:
        raise ValidationError('bandId', 'A rehearsal cannot be moved to another band')
    _check_series(candidate)
    rehearsal = candidate.model_copy(update={
        'id': existing.id,
        'created_by': existing.created_by,
        'attendance': existing.attendance,
        'is_cancelled': existing.is_cancelled,
        'cancel_reason': existing.cancel_reason,
        'reminder_sent_at': existing.reminder_sent_at,
        'created_at': existing.created_at,
    })
    AttendanceTracker(rehearsal.attendance).initialize(_member_ids(bands, rehearsal.band_id))
    rehearsal = rehearsals.update(rehearsal)
    logger.info("Rehearsal %s updated by user %s", rehearsal.id, user_id)
    return rehearsal


def record_rsvp(
    session: Session,
    rehearsal_id: int,
    user_id: int,
    status: str,
    response: str | None = None,
) -> Rehearsal:
    """Store ``user_id``'s answer for one rehearsal."""
    rehearsals = RehearsalDAO(session)
    rehearsal = rehearsals.get(rehearsal_id)
    if rehearsal is None:
        raise NotFoundError('Rehearsal', rehearsal_id)
    if rehearsal.is_cancelled:
        raise ValidationError('isCancelled', 'This rehearsal has been cancelled')
    AttendanceTracker(rehearsal.attendance).record_response(user_id, status, response)
    return rehearsals.update(rehearsal)


def _readable_rehearsal(session: Session, rehearsal_id: int, user_id: int) -> Rehearsal:
    rehearsal = RehearsalDAO(session).get(rehearsal_id)
    if rehearsal is None:
        raise NotFoundError('Rehearsal', rehearsal_id)
    if rehearsal.created_by != user_id and not is_member(user_id, rehearsal.band_id, BandDAO(session)):
        raise AuthorizationError('Only band members can see this rehearsal')
    return rehearsal


def get_rehearsal(session: Session, rehearsal_id: int, user_id: int) -> Rehearsal:
    return _readable_rehearsal(session, rehearsal_id, user_id)


def cancel_rehearsal(session: Session, rehearsal_id: int, user_id: int, reason: str | None = None) -> Rehearsal:
    rehearsals = RehearsalDAO(session)
    rehearsal = rehearsals.get(rehearsal_id)
    if rehearsal is None:
        raise NotFoundError('Rehearsal', rehearsal_id)
    require_modify(user_id, rehearsal, BandDAO(session))
    rehearsal.is_cancelled = True
    rehearsal.cancel_reason = clean_text(reason)
    rehearsal = rehearsals.update(rehearsal)
    logger.info("Rehearsal %s cancelled by user %s", rehearsal_id, user_id)
    return rehearsal


def mark_reminder_sent(session: Session, rehearsal_id: int, when: datetime.datetime | None = None) -> Rehearsal:
    """Record that the reminder for ``rehearsal_id`` went out."""
    rehearsals = RehearsalDAO(session)
    rehearsal = rehearsals.get(rehearsal_id)
    if rehearsal is None:
        raise NotFoundError('Rehearsal', rehearsal_id)
    rehearsal.reminder_sent_at = when or utcnow()
    return rehearsals.update(rehearsal)


def list_band_rehearsals(
    session: Session,
    band_id: int,
    user_id: int,
    start: datetime.datetime | None = None,
    end: datetime.datetime | None = None,
    include_cancelled: bool = True,
) -> list[Rehearsal]:
    bands = BandDAO(session)
    if user_id not in _member_ids(bands, band_id):
        raise AuthorizationError('Only band members can see band rehearsals')
    return RehearsalDAO(session).list_by_band(band_id, start, end, include_cancelled)


def list_occurrences(session: Session, rehearsal_id: int, user_id: int, limit: int | None = None) -> list[Occurrence]:
    return expand_rehearsal(_readable_rehearsal(session, rehearsal_id, user_id), limit=limit)


def attendance_summary(session: Session, rehearsal_id: int, user_id: int) -> dict:
    return attendance_counts(_readable_rehearsal(session, rehearsal_id, user_id).attendance)


def rehearsal_view(rehearsal: Rehearsal) -> dict:
    """Stored document plus the computed ``attendanceCounts`` and
    ``durationMinutes`` fields."""
    view = rehearsal.to_document()
    view['attendanceCounts'] = attendance_counts(rehearsal.attendance)
    view['durationMinutes'] = duration_minutes(rehearsal)
    return view


#############################
# Users
#############################


def register_user(session: Session, payload: dict) -> tuple[User, dict]:
    user = validate_registration(payload)
    created = UserDAO(session).create(prepare_user_for_write(user))
    logger.info("Registered user %s", created.id)
    return created, issue_tokens(created.id)


def authenticate(session: Session, email: str, password: str) -> tuple[User, dict]:
    users = UserDAO(session)
    user = users.get_by_email(email or '')
    if user is None or not verify_password(password or '', users.get_password_hash(user.id)):
        logger.info("Failed login attempt")
        raise AuthenticationError('Invalid credentials')
    return user, issue_tokens(user.id)


def current_user(session: Session, access_token: str) -> User:
    user = UserDAO(session).get(decode_access_token(access_token))
    if user is None:
        raise AuthenticationError('Invalid token')
    return user


def refresh_tokens(session: Session, refresh_token: str) -> dict:
    user_id = decode_refresh_token(refresh_token)
    if UserDAO(session).get(user_id) is None:
        raise AuthenticationError('Invalid token')
    return issue_tokens(user_id)


def change_password(session: Session, user_id: int, old_password: str, new_password: str) -> None:
    users = UserDAO(session)
    if not verify_password(old_password or '', users.get_password_hash(user_id)):
        raise AuthenticationError('Invalid current password')
    validate_password(new_password, 'newPassword')
    users.set_password_hash(user_id, hash_password(new_password))
    logger.info("Password changed for user %s", user_id)


def update_profile(session: Session, user_id: int, payload: dict) -> User:
    return UserDAO(session).update_profile(user_id, validate_profile_update(payload))


def request_password_reset(session: Session, email: str) -> str | None:
    """Issue a reset token for ``email``.  Returns the plain token for
    delivery to the user, or ``None`` when no account matches."""
    users = UserDAO(session)
    user = users.get_by_email(email or '')
    if user is None:
        return None
    token, token_hash, expires_at = generate_reset_token()
    users.set_reset_token(user.id, token_hash, expires_at)
    logger.info("Password reset requested for user %s", user.id)
    return token


def reset_password(session: Session, token: str, new_password: str) -> User:
    users = UserDAO(session)
    found = users.find_reset_token(hash_reset_token(token or ''))
    if found is None:
        raise AuthenticationError('Invalid or expired reset token')
    user_id, expires_at = found
    if expires_at <= int(time.time()):
        users.clear_reset_token(user_id)
        raise AuthenticationError('Invalid or expired reset token')
    validate_password(new_password)
    users.set_password_hash(user_id, hash_password(new_password))
    logger.info("Password reset for user %s", user_id)
    return users.get(user_id)


#############################
# Bands
#############################


def create_band(session: Session, name: str, user_id: int) -> Band:
    band = validate_document(Band, {'name': name})
    created = BandDAO(session).create(band.name, user_id)
    logger.info("Band %s created by user %s", created.id, user_id)
    return created


def get_band(session: Session, band_id: int, user_id: int) -> Band:
    bands = BandDAO(session)
    band = bands.get(band_id)
    if band is None:
        raise NotFoundError('Band', band_id)
    if not is_member(user_id, band_id, bands):
        raise AuthorizationError('Only band members can see this band')
    return band


def _require_band_admin(bands: BandDAO, band_id: int, user_id: int) -> None:
    if bands.get_members(band_id) is None:
        raise NotFoundError('Band', band_id)
    if not is_band_admin(user_id, band_id, bands):
        raise AuthorizationError('Only band admins can manage members')


def _parse_role(role) -> BandRole:
    try:
        return BandRole(role)
    except ValueError:
        allowed = ', '.join(r.value for r in BandRole)
        raise ValidationError('role', f"Role must be one of: {allowed}") from None


def add_band_member(session: Session, band_id: int, admin_id: int, member_id: int, role='member') -> BandMember:
    """Add ``member_id`` to the band and give them a pending answer on every
    upcoming rehearsal that is not cancelled."""
    bands = BandDAO(session)
    _require_band_admin(bands, band_id, admin_id)
    role = _parse_role(role)
    if UserDAO(session).get(member_id) is None:
        raise NotFoundError('User', member_id)
    member = bands.add_member(band_id, member_id, role)
    rehearsals = RehearsalDAO(session)
    for rehearsal in rehearsals.list_by_band(band_id, start=utcnow(), include_cancelled=False):
        if AttendanceTracker(rehearsal.attendance).initialize([member_id]):
            rehearsals.update(rehearsal)
    logger.info("User %s joined band %s as %s", member_id, band_id, role.value)
    return member


def set_member_role(session: Session, band_id: int, admin_id: int, member_id: int, role) -> BandMember:
    bands = BandDAO(session)
    _require_band_admin(bands, band_id, admin_id)
    member = bands.set_role(band_id, member_id, _parse_role(role))
    if member is None:
        raise NotFoundError('Member', member_id)
    return member
