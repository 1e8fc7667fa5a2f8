"""
Shared fixtures.

No external service is ever called: the request store and activity log
are in memory, attachments go to a fake store, and time is a clock the
test controls.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from treasury.config.settings import TreasurySettings
from treasury.models.payloads import FileUpload
from treasury.models.request import Actor, ActorRole, MemberTier, PayeeSnapshot, Period
from treasury.orchestrator import create_app_components
from treasury.services.attachments import AttachmentStorageInterface
from treasury.services.club_settings import ClubSettingsInterface, TreasurerNotConfiguredError
from treasury.services.credentials import InMemoryCredentialStore
from treasury.services.members import InMemoryMemberDirectory
from treasury.services.storage import InMemoryAuditStorage, InMemoryRequestStore


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class StubClubSettings(ClubSettingsInterface):
    """Club settings the tests can change on the fly."""

    def __init__(self, upi_id="treasurer@okaxis", name="AuroraTreasury", deadline_day=5):
        self.amounts = {
            MemberTier.FIRST_YEAR: Decimal("50.00"),
            MemberTier.SECOND_YEAR: Decimal("100.00"),
            MemberTier.THIRD_YEAR: Decimal("150.00"),
            MemberTier.FOURTH_YEAR: Decimal("200.00"),
        }
        self.upi_id = upi_id
        self.name = name
        self.deadline_day = deadline_day

    def tier_amount(self, tier: MemberTier) -> Decimal:
        return self.amounts[tier]

    def payee(self) -> PayeeSnapshot:
        if not self.upi_id:
            raise TreasurerNotConfiguredError("Treasurer UPI not configured")
        return PayeeSnapshot(upi_id=self.upi_id, name=self.name)

    def deadline_for(self, period: Period) -> datetime:
        return datetime(period.year, period.month, self.deadline_day, 23, 59, 59, tzinfo=timezone.utc)


class FakeAttachmentStorage(AttachmentStorageInterface):
    """Records uploads and returns predictable URLs."""

    def __init__(self):
        self.uploads: list[tuple[str, FileUpload]] = []

    async def upload(self, upload: FileUpload, folder: str) -> str:
        self.uploads.append((folder, upload))
        return f"https://files.example/{folder}/{upload.filename}"


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 1, 3, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def treasury_settings():
    return TreasurySettings(
        treasurer_upi="treasurer@okaxis",
        payee_name="AuroraTreasury",
        payment_expiry_policy="retain",
        reference_max_attempts=5,
    )


@pytest.fixture
def club():
    return StubClubSettings()


@pytest.fixture
def members():
    """Membership records for the member fixtures below."""
    return InMemoryMemberDirectory({
        "64f1a2b3c4d5e6f7a85f2a9c": MemberTier.SECOND_YEAR,
        "64f1a2b3c4d5e6f7a8b9c0d1": MemberTier.SECOND_YEAR,
    })


@pytest.fixture
def store():
    return InMemoryRequestStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def attachments():
    return FakeAttachmentStorage()


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def app(clock, treasury_settings, club, members, store, audit_storage, attachments, credential_store):
    return create_app_components(
        use_storage=False,
        treasury_settings=treasury_settings,
        store=store,
        audit_storage=audit_storage,
        attachments=attachments,
        club_settings=club,
        member_directory=members,
        credential_store=credential_store,
        clock=clock,
    )


@pytest.fixture
def payments(app):
    return app.payments


@pytest.fixture
def reimbursements(app):
    return app.reimbursements


@pytest.fixture
def credential_resets(app):
    return app.credential_resets


@pytest.fixture
def advisor(app):
    return app.reconciliation


@pytest.fixture
def member():
    return Actor(id="64f1a2b3c4d5e6f7a85f2a9c", role=ActorRole.MEMBER)


@pytest.fixture
def other_member():
    return Actor(id="64f1a2b3c4d5e6f7a8b9c0d1", role=ActorRole.MEMBER)


@pytest.fixture
def treasurer():
    return Actor(id="treasurer-01", role=ActorRole.TREASURER)


@pytest.fixture
def system():
    return Actor(id="scheduler", role=ActorRole.SYSTEM)


@pytest.fixture
def january_draft():
    return {"period": "January 2026"}


@pytest.fixture
def reimbursement_draft():
    return {
        "description": "Snacks for the January meetup",
        "contact_number": "9876543210",
        "amount": "500.00",
        "bill_proof": "https://files.example/bills/snacks.jpg",
    }
