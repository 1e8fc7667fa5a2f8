"""
Member Directory Collaborator

The membership records own each member's year tier. Dues are always
priced from here, never from what the member's app sends.
"""

from abc import ABC, abstractmethod
from typing import Optional

from treasury.models.request import MemberTier


class UnknownMemberError(Exception):
    """No membership record for this id."""
    pass


class MemberDirectoryInterface(ABC):
    """Membership records used to price dues."""

    @abstractmethod
    def tier_for(self, member_id: str) -> MemberTier:
        """
        Current year tier of a member.

        Raises:
            UnknownMemberError: No record for the member
        """
        pass


class InMemoryMemberDirectory(MemberDirectoryInterface):
    """Tier per member id, kept in a dict."""

    def __init__(self, tiers: Optional[dict[str, MemberTier]] = None):
        self.tiers: dict[str, MemberTier] = dict(tiers or {})

    def tier_for(self, member_id: str) -> MemberTier:
        try:
            return self.tiers[member_id]
        except KeyError:
            raise UnknownMemberError(f"No membership record for {member_id}")
