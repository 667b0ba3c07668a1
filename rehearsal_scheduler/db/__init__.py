import datetime
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rehearsal_scheduler.errors import ConflictError, NotFoundError
from rehearsal_scheduler.schemas import (
    Band,
    BandMember,
    BandRole,
    ProfileUpdate,
    Rehearsal,
    User,
)
from rehearsal_scheduler.utils import to_utc_naive, utcnow
from .database import Base, SessionLocal, engine
from .models import BandMemberRecord, BandRecord, RehearsalRecord, UserRecord

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('phone', 'instruments', 'profileImage', 'preferences')


#############################
# Session helpers
#############################


def safe_commit(session: Session) -> None:
    """Commit the current transaction, rolling back on failure."""
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise


def get_db():
    """Yield a session for one request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create tables if they do not already exist.  Idempotent."""
    Base.metadata.create_all(bind=bind or engine)


#############################
# Rehearsals
#############################


def _to_rehearsal(row: RehearsalRecord) -> Rehearsal:
    return Rehearsal.model_validate({**row.document, 'id': row.id})


def _rehearsal_document(rehearsal: Rehearsal) -> dict:
    document = rehearsal.to_document()
    document.pop('id', None)
    return document


class RehearsalDAO:
    """Data access helper for rehearsal documents."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, rehearsal: Rehearsal) -> Rehearsal:
        now = utcnow()
        rehearsal = rehearsal.model_copy(update={'id': None, 'created_at': now, 'updated_at': now})
        row = RehearsalRecord(
            band_id=rehearsal.band_id,
            start_time=to_utc_naive(rehearsal.start_time),
            created_by=rehearsal.created_by,
            is_cancelled=rehearsal.is_cancelled,
            document=_rehearsal_document(rehearsal),
        )
        self.session.add(row)
        safe_commit(self.session)
        return rehearsal.model_copy(update={'id': row.id})

    def get(self, rehearsal_id: int) -> Rehearsal | None:
        row = self.session.get(RehearsalRecord, rehearsal_id)
        return _to_rehearsal(row) if row else None

    def update(self, rehearsal: Rehearsal) -> Rehearsal:
        row = self.session.get(RehearsalRecord, rehearsal.id)
        if row is None:
            raise NotFoundError('Rehearsal', rehearsal.id)
        rehearsal = rehearsal.model_copy(update={'updated_at': utcnow()})
        row.band_id = rehearsal.band_id
        row.start_time = to_utc_naive(rehearsal.start_time)
        row.created_by = rehearsal.created_by
        row.is_cancelled = rehearsal.is_cancelled
        row.document = _rehearsal_document(rehearsal)
        safe_commit(self.session)
        return rehearsal

    def list_by_band(
        self,
        band_id: int,
        start: datetime.datetime | None = None,
        end: datetime.datetime | None = None,
        include_cancelled: bool = True,
    ) -> list[Rehearsal]:
        query = select(RehearsalRecord).where(RehearsalRecord.band_id == band_id)
        if start is not None:
            query = query.where(RehearsalRecord.start_time >= to_utc_naive(start))
        if end is not None:
            query = query.where(RehearsalRecord.start_time <= to_utc_naive(end))
        if not include_cancelled:
            query = query.where(RehearsalRecord.is_cancelled.is_(False))
        query = query.order_by(RehearsalRecord.start_time, RehearsalRecord.id)
        return [_to_rehearsal(row) for row in self.session.scalars(query)]


#############################
# Bands
#############################


def _to_member(row: BandMemberRecord) -> BandMember:
    return BandMember(user_id=row.user_id, role=row.role)


class BandDAO:
    """Bands and their member lists.  Also serves as the membership lookup
    used by :mod:`rehearsal_scheduler.permissions`."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, name: str, created_by: int) -> Band:
        row = BandRecord(name=name, created_by=created_by)
        row.members.append(BandMemberRecord(user_id=created_by, role=BandRole.ADMIN.value))
        self.session.add(row)
        safe_commit(self.session)
        return self.get(row.id)

    def get(self, band_id: int) -> Band | None:
        row = self.session.get(BandRecord, band_id)
        if row is None:
            return None
        return Band(
            id=row.id,
            name=row.name,
            created_by=row.created_by,
            members=[_to_member(m) for m in row.members],
        )

    def get_members(self, band_id: int) -> list[BandMember] | None:
        # Always query: membership and roles may have changed since the
        # band row was loaded in this session.
        if self.session.get(BandRecord, band_id) is None:
            return None
        rows = self.session.scalars(
            select(BandMemberRecord)
            .where(BandMemberRecord.band_id == band_id)
            .order_by(BandMemberRecord.id)
            .execution_options(populate_existing=True)
        )
        return [_to_member(row) for row in rows]

    def _member_row(self, band_id: int, user_id: int) -> BandMemberRecord | None:
        return self.session.scalars(
            select(BandMemberRecord).where(
                BandMemberRecord.band_id == band_id,
                BandMemberRecord.user_id == user_id,
            )
        ).first()

    def add_member(self, band_id: int, user_id: int, role: BandRole = BandRole.MEMBER) -> BandMember:
        if self._member_row(band_id, user_id) is not None:
            raise ConflictError('User is already a member of this band')
        row = BandMemberRecord(band_id=band_id, user_id=user_id, role=BandRole(role).value)
        self.session.add(row)
        try:
            safe_commit(self.session)
        except IntegrityError:
            raise ConflictError('User is already a member of this band') from None
        return _to_member(row)

    def set_role(self, band_id: int, user_id: int, role: BandRole) -> BandMember | None:
        row = self._member_row(band_id, user_id)
        if row is None:
            return None
        row.role = BandRole(role).value
        safe_commit(self.session)
        return _to_member(row)


#############################
# Users
#############################


def _to_user(row: UserRecord) -> User:
    return User.model_validate({
        **(row.profile or {}),
        'id': row.id,
        'email': row.email,
        'name': row.name,
        'createdAt': row.created_at,
    })


class UserDAO:
    """Users.  Reads return :class:`User`, which carries no password hash;
    the hash is only reachable through :meth:`get_password_hash`."""

    def __init__(self, session: Session):
        self.session = session

    def _row_by_email(self, email: str) -> UserRecord | None:
        email = (email or '').strip().lower()
        return self.session.scalars(select(UserRecord).where(UserRecord.email == email)).first()

    def create(self, document: dict) -> User:
        """Insert a prepared user document (see ``auth.prepare_user_for_write``)."""
        if 'password' in document or not document.get('passwordHash'):
            raise ValueError('User documents must be prepared before writing')
        if self._row_by_email(document['email']) is not None:
            raise ConflictError('Email already registered')
        row = UserRecord(
            email=document['email'],
            name=document['name'],
            password_hash=document['passwordHash'],
            profile={key: document[key] for key in PROFILE_FIELDS if key in document},
        )
        self.session.add(row)
        try:
            safe_commit(self.session)
        except IntegrityError:
            raise ConflictError('Email already registered') from None
        return _to_user(row)

    def get(self, user_id: int) -> User | None:
        row = self.session.get(UserRecord, user_id)
        return _to_user(row) if row else None

    def get_by_email(self, email: str) -> User | None:
        row = self._row_by_email(email)
        return _to_user(row) if row else None

    def get_password_hash(self, user_id: int) -> str | None:
        row = self.session.get(UserRecord, user_id)
        return row.password_hash if row else None

    def set_password_hash(self, user_id: int, password_hash: str) -> None:
        row = self.session.get(UserRecord, user_id)
        if row is None:
            raise NotFoundError('User', user_id)
        row.password_hash = password_hash
        row.reset_password_token = None
        row.reset_password_expire = None
        safe_commit(self.session)

    def set_reset_token(self, user_id: int, token_hash: str, expires_at: int) -> None:
        row = self.session.get(UserRecord, user_id)
        if row is None:
            raise NotFoundError('User', user_id)
        row.reset_password_token = token_hash
        row.reset_password_expire = expires_at
        safe_commit(self.session)

    def find_reset_token(self, token_hash: str) -> tuple[int, int] | None:
        """Return ``(user_id, expires_at)`` for a stored reset token hash."""
        row = self.session.scalars(
            select(UserRecord).where(UserRecord.reset_password_token == token_hash)
        ).first()
        if row is None:
            return None
        return row.id, row.reset_password_expire or 0

    def clear_reset_token(self, user_id: int) -> None:
        row = self.session.get(UserRecord, user_id)
        if row is None:
            return
        row.reset_password_token = None
        row.reset_password_expire = None
        safe_commit(self.session)

    def update_profile(self, user_id: int, update: ProfileUpdate) -> User:
        row = self.session.get(UserRecord, user_id)
        if row is None:
            raise NotFoundError('User', user_id)
        changes = update.model_dump(mode='json', by_alias=True, exclude_unset=True)
        if changes.get('name') is not None:
            row.name = changes.pop('name')
        changes.pop('name', None)
        profile = dict(row.profile or {})
        profile.update({key: value for key, value in changes.items() if key in PROFILE_FIELDS and value is not None})
        row.profile = profile
        safe_commit(self.session)
        return _to_user(row)
