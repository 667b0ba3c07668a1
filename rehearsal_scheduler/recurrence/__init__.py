"""Expansion of recurring rehearsal patterns into concrete occurrences.

A pattern is stored on the rehearsal document (``recurringPattern``) and is
expanded on demand; occurrences are never persisted.  Expansion is done
with :mod:`dateutil.rrule`:

* ``daily`` steps ``interval`` days from the start.
* ``weekly`` / ``biweekly`` step ``interval`` x 1 or 2 weeks and keep the
  chosen weekdays of each active week.  Weeks start on Sunday, matching the
  stored weekday numbering (0 = Sunday ... 6 = Saturday).
* ``monthly`` steps ``interval`` months on the start's day of month.
  Months without that day are skipped.

Output is always finite: ``count`` bounds it when given, ``endDate``
(inclusive) stops it when reached, and ``MAX_OCCURRENCES`` caps every
series, open-ended or not.
"""

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from dateutil.rrule import DAILY, MONTHLY, SU, WEEKLY, rrule

from rehearsal_scheduler.errors import InvalidPatternError
from rehearsal_scheduler.schemas import MAX_OCCURRENCES, Frequency, RecurringPattern, Rehearsal
from rehearsal_scheduler.utils import ensure_aware

logger = logging.getLogger(__name__)

WEEK_MULTIPLIER = {Frequency.WEEKLY: 1, Frequency.BIWEEKLY: 2}


@dataclass(frozen=True)
class Occurrence:
    start: datetime
    end: datetime

    def to_dict(self) -> dict:
        return {'startTime': self.start.isoformat(), 'endTime': self.end.isoformat()}


def to_rrule_weekday(day: int) -> int:
    """Map 0 = Sunday numbering onto dateutil's 0 = Monday numbering."""
    return (day + 6) % 7


def build_rule(pattern: RecurringPattern, start: datetime) -> rrule:
    """Return the (unbounded by count) rule for ``pattern`` starting at ``start``."""
    start = ensure_aware(start)
    until = ensure_aware(pattern.end_date) if pattern.end_date else None

    if pattern.frequency in WEEK_MULTIPLIER:
        if not pattern.days_of_week:
            raise InvalidPatternError(
                'Weekly patterns need at least one day of the week',
                field='recurringPattern.daysOfWeek',
            )
        weekdays = sorted({to_rrule_weekday(day) for day in pattern.days_of_week})
        return rrule(
            WEEKLY,
            interval=pattern.interval * WEEK_MULTIPLIER[pattern.frequency],
            byweekday=weekdays,
            wkst=SU,
            dtstart=start,
            until=until,
        )
    if pattern.frequency == Frequency.MONTHLY:
        return rrule(MONTHLY, interval=pattern.interval, bymonthday=start.day, dtstart=start, until=until)
    return rrule(DAILY, interval=pattern.interval, dtstart=start, until=until)


def expand(
    pattern: RecurringPattern,
    start: datetime,
    end: datetime | None = None,
    *,
    limit: int | None = None,
) -> list[Occurrence]:
    """Expand ``pattern`` into an ordered list of occurrences.

    Each occurrence keeps the duration ``end - start`` (zero when ``end`` is
    omitted).  The series stops after ``count`` occurrences, after ``limit``
    occurrences, or after ``MAX_OCCURRENCES``, whichever is smallest.

    Raises :class:`InvalidPatternError` when no occurrence can be produced.
    """
    start = ensure_aware(start)
    duration = ensure_aware(end) - start if end is not None else timedelta(0)
    rule = build_rule(pattern, start)
    bound = min(n for n in (pattern.count, limit, MAX_OCCURRENCES) if n)
    occurrences = [Occurrence(moment, moment + duration) for moment in itertools.islice(rule, bound)]
    if not occurrences:
        raise InvalidPatternError('Recurrence pattern does not produce any occurrence')
    logger.debug(
        "Expanded %s pattern from %s into %d occurrences",
        pattern.frequency.value, start.isoformat(), len(occurrences),
    )
    return occurrences


def expand_rehearsal(rehearsal: Rehearsal, *, limit: int | None = None) -> list[Occurrence]:
    """Occurrences of ``rehearsal``: the series when recurring, else itself."""
    if rehearsal.is_recurring and rehearsal.recurring_pattern is not None:
        return expand(rehearsal.recurring_pattern, rehearsal.start_time, rehearsal.end_time, limit=limit)
    return [Occurrence(rehearsal.start_time, rehearsal.end_time)]
