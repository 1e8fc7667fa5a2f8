"""
Club Settings Provider

Read-only view of the treasurer-maintained settings the workflows need:
dues per year tier, the treasurer's UPI payee details, and deadlines.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from treasury.config import get_settings
from treasury.config.settings import TreasurySettings
from treasury.models.request import MemberTier, PayeeSnapshot, Period


class TreasurerNotConfiguredError(Exception):
    """Treasurer UPI handle has not been set."""
    pass


class ClubSettingsInterface(ABC):
    """Settings store collaborator."""

    @abstractmethod
    def tier_amount(self, tier: MemberTier) -> Decimal:
        """Monthly dues for a year tier, in INR with two decimals."""
        pass

    @abstractmethod
    def payee(self) -> PayeeSnapshot:
        """
        Treasurer's current UPI payee details.

        Raises:
            TreasurerNotConfiguredError: No UPI handle set
        """
        pass

    @abstractmethod
    def deadline_for(self, period: Period) -> datetime:
        """Payment deadline for a period (UTC)."""
        pass


class SettingsClubProvider(ClubSettingsInterface):
    """ClubSettingsInterface backed by TreasurySettings (environment)."""

    def __init__(self, settings: Optional[TreasurySettings] = None):
        self._settings = settings or get_settings().treasury

    def tier_amount(self, tier: MemberTier) -> Decimal:
        amounts = {
            MemberTier.FIRST_YEAR: self._settings.first_year_amount,
            MemberTier.SECOND_YEAR: self._settings.second_year_amount,
            MemberTier.THIRD_YEAR: self._settings.third_year_amount,
            MemberTier.FOURTH_YEAR: self._settings.fourth_year_amount,
        }
        return Decimal(amounts[tier]).quantize(Decimal("0.01"))

    def payee(self) -> PayeeSnapshot:
        if not self._settings.treasurer_upi:
            raise TreasurerNotConfiguredError(
                "Treasurer UPI not configured. Please contact treasurer."
            )
        return PayeeSnapshot(
            upi_id=self._settings.treasurer_upi,
            name=self._settings.payee_name,
        )

    def deadline_for(self, period: Period) -> datetime:
        return datetime(
            period.year,
            period.month,
            self._settings.payment_deadline_day,
            23, 59, 59,
            tzinfo=timezone.utc,
        )
