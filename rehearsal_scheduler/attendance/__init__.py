import logging
from datetime import datetime
from typing import Iterable

from rehearsal_scheduler.errors import UnknownMemberError, ValidationError
from rehearsal_scheduler.schemas import Attendance, AttendanceStatus
from rehearsal_scheduler.utils import clean_text, utcnow

logger = logging.getLogger(__name__)


class AttendanceTracker:
    """Per-member RSVP state of one rehearsal.

    Operates in place on the rehearsal's ``attendance`` list so the caller
    persists the owning document after mutating it.  Counts are derived on
    demand and never cached.
    """

    def __init__(self, records: list[Attendance]):
        self.records = records

    def find(self, user_id: int) -> Attendance | None:
        for record in self.records:
            if record.user_id == user_id:
                return record
        return None

    def initialize(self, member_ids: Iterable[int]) -> list[Attendance]:
        """Add a pending record for every member without one.  Returns the
        records added; calling again with the same ids adds nothing."""
        known = {record.user_id for record in self.records}
        added = []
        for user_id in member_ids:
            if user_id in known:
                continue
            record = Attendance(user_id=user_id)
            self.records.append(record)
            added.append(record)
            known.add(user_id)
        return added

    def record_response(
        self,
        user_id: int,
        status: str,
        response: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Attendance:
        try:
            status = AttendanceStatus(status)
        except ValueError:
            allowed = ', '.join(s.value for s in AttendanceStatus)
            raise ValidationError('status', f"Status must be one of: {allowed}") from None
        record = self.find(user_id)
        if record is None:
            raise UnknownMemberError(user_id)
        record.status = status
        record.response = clean_text(response)
        record.responded_at = now or utcnow()
        logger.info("User %s answered %s", user_id, status.value)
        return record

    def summarize(self) -> dict:
        counts = {status.value: 0 for status in AttendanceStatus}
        for record in self.records:
            counts[AttendanceStatus(record.status).value] += 1
        counts['total'] = len(self.records)
        return counts


def attendance_counts(records: list[Attendance]) -> dict:
    return AttendanceTracker(records).summarize()
