"""
Document schemas for the rehearsal scheduler.

Each model mirrors a stored document.  Python attributes are snake_case
while the persisted (and JSON) field names are the camelCase aliases, so
``Rehearsal.model_validate(doc)`` accepts stored documents as they are and
``to_document()`` writes them back verbatim.
"""

import os
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from rehearsal_scheduler.utils import ensure_aware

Timestamp = Annotated[datetime, AfterValidator(ensure_aware)]

WEEKDAY_MESSAGE = 'Days of week must be between 0-6 (Sunday-Saturday)'

# Upper bound on the occurrences a series may produce, also used as the
# default length of open-ended series.
MAX_OCCURRENCES = int(os.environ.get('MAX_OCCURRENCES', 250))


class Frequency(str, Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    BIWEEKLY = 'biweekly'
    MONTHLY = 'monthly'


class AttendanceStatus(str, Enum):
    CONFIRMED = 'confirmed'
    DECLINED = 'declined'
    PENDING = 'pending'


class BandRole(str, Enum):
    ADMIN = 'admin'
    MEMBER = 'member'


class Availability(str, Enum):
    AVAILABLE = 'available'
    UNAVAILABLE = 'unavailable'
    TENTATIVE = 'tentative'


def _check_weekdays(values: List[int]) -> List[int]:
    if any(day < 0 or day > 6 for day in values):
        raise ValueError(WEEKDAY_MESSAGE)
    return values


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_document(self) -> dict:
        """Return the JSON-compatible stored form, keyed by camelCase names."""
        return self.model_dump(mode='json', by_alias=True)


# Rehearsals -----------------------------------------------------------


class Coordinates(Document):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class Venue(Document):
    name: str = Field(..., min_length=1, description="Venue name")
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class RecurringPattern(Document):
    frequency: Frequency = Frequency.WEEKLY
    interval: int = Field(1, ge=1)
    days_of_week: List[int] = Field(default_factory=list, description="0 = Sunday ... 6 = Saturday")
    end_date: Optional[Timestamp] = None
    count: Optional[int] = Field(None, ge=1, le=MAX_OCCURRENCES)

    check_weekdays = field_validator('days_of_week')(_check_weekdays)


class Attendance(Document):
    user_id: int
    status: AttendanceStatus = AttendanceStatus.PENDING
    response: Optional[str] = None
    responded_at: Optional[Timestamp] = None


class Rehearsal(Document):
    """A scheduled rehearsal of one band.
    Collection: "rehearsals"
    """

    id: Optional[int] = None
    band_id: int = Field(..., description="Owning band id")
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    start_time: Timestamp
    end_time: Timestamp
    venue: Venue
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    songs: List[str] = Field(default_factory=list, description="Ordered song ids")
    notes: Optional[str] = None
    created_by: Optional[int] = None
    attendance: List[Attendance] = Field(default_factory=list)
    is_cancelled: bool = False
    cancel_reason: Optional[str] = None
    reminder_sent_at: Optional[Timestamp] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None

    @field_validator('end_time')
    @classmethod
    def end_after_start(cls, value, info):
        start = info.data.get('start_time')
        if start is not None and value <= start:
            raise ValueError('End time must be after start time')
        return value

    @field_validator('attendance')
    @classmethod
    def unique_attendees(cls, records):
        seen = set()
        for record in records:
            if record.user_id in seen:
                raise ValueError(f"Duplicate attendance record for user {record.user_id}")
            seen.add(record.user_id)
        return records


def duration_minutes(rehearsal: Rehearsal) -> int:
    """Length of a rehearsal in whole minutes, rounded."""
    return round((rehearsal.end_time - rehearsal.start_time).total_seconds() / 60)


# Users ----------------------------------------------------------------


class NotificationChannel(Document):
    rehearsal_reminders: bool = True
    rehearsal_changes: bool = True
    new_band_invites: bool = True


class NotificationPreferences(Document):
    email: NotificationChannel = Field(default_factory=NotificationChannel)
    push: NotificationChannel = Field(default_factory=NotificationChannel)


class AvailabilityPreferences(Document):
    default_availability: Availability = Availability.AVAILABLE
    preferred_days: List[int] = Field(default_factory=list)

    check_weekdays = field_validator('preferred_days')(_check_weekdays)


class UserPreferences(Document):
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    availability_preferences: AvailabilityPreferences = Field(default_factory=AvailabilityPreferences)


def _normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


class UserProfile(Document):
    name: str = Field(..., min_length=1, max_length=50)
    phone: Optional[str] = None
    instruments: List[str] = Field(default_factory=list)
    profile_image: str = ''
    preferences: UserPreferences = Field(default_factory=UserPreferences)


class User(UserProfile):
    """Public view of a user.  The password hash never appears here.
    Collection: "users"
    """

    id: Optional[int] = None
    email: EmailStr
    created_at: Optional[Timestamp] = None

    normalize_email = field_validator('email', mode='before')(_normalize_email)


class UserCreate(UserProfile):
    email: EmailStr
    password: str = Field(..., min_length=8)

    normalize_email = field_validator('email', mode='before')(_normalize_email)


class ProfileUpdate(Document):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = None
    instruments: Optional[List[str]] = None
    profile_image: Optional[str] = None
    preferences: Optional[UserPreferences] = None


# Bands ----------------------------------------------------------------


class BandMember(Document):
    user_id: int
    role: BandRole = BandRole.MEMBER


class Band(Document):
    """Collection: "bands" """

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=100)
    created_by: Optional[int] = None
    members: List[BandMember] = Field(default_factory=list)
