"""Who may change a rehearsal.

The band's member list is read through ``memberships`` on every call: roles
can change between two requests, so nothing here is cached.
"""

from typing import Protocol

from rehearsal_scheduler.errors import AuthorizationError
from rehearsal_scheduler.schemas import BandMember, BandRole, Rehearsal


class MembershipLookup(Protocol):
    def get_members(self, band_id: int) -> list[BandMember] | None:
        """Return the band's members, or ``None`` when the band is unknown."""
        ...


def find_member(user_id: int, band_id: int, memberships: MembershipLookup) -> BandMember | None:
    members = memberships.get_members(band_id)
    if not members:
        return None
    return next((m for m in members if m.user_id == user_id), None)


def is_member(user_id: int, band_id: int, memberships: MembershipLookup) -> bool:
    return find_member(user_id, band_id, memberships) is not None


def is_band_admin(user_id: int, band_id: int, memberships: MembershipLookup) -> bool:
    member = find_member(user_id, band_id, memberships)
    return member is not None and member.role == BandRole.ADMIN


def can_modify(user_id: int, rehearsal: Rehearsal, memberships: MembershipLookup) -> bool:
    """True for the rehearsal's creator or an admin of its band."""
    if rehearsal.created_by is not None and rehearsal.created_by == user_id:
        return True
    return is_band_admin(user_id, rehearsal.band_id, memberships)


def require_modify(user_id: int, rehearsal: Rehearsal, memberships: MembershipLookup) -> None:
    if not can_modify(user_id, rehearsal, memberships):
        raise AuthorizationError('Only the creator or a band admin can modify this rehearsal')
