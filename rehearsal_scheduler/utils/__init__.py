import datetime


def utcnow() -> datetime.datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_aware(value: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes.  Aware values keep their own offset so
    weekday arithmetic happens in the zone the rehearsal was scheduled in."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def to_utc_naive(value: datetime.datetime) -> datetime.datetime:
    """Convert to naive UTC, the form stored in indexed timestamp columns."""
    return ensure_aware(value).astimezone(datetime.timezone.utc).replace(tzinfo=None)


def clean_text(value: str | None) -> str | None:
    """Trim ``value`` and collapse empty strings to ``None``."""
    value = (value or '').strip()
    return value or None
