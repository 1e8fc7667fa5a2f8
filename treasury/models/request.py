"""
Core Request Models for Aurora Treasury

These models define the strict schemas for every request kind handled by
the approval workflow engine. They are designed to:
1. Enforce type safety at runtime
2. Keep the full status history on the request document itself
3. Carry an optimistic-concurrency version on every request
4. Be serializable for storage and logging

DESIGN DECISION: StatusEvent is frozen. Once appended to a history it
can never be edited, only followed by another event.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class RequestKind(str, Enum):
    """The three request kinds that share the approval lifecycle."""
    FUND_PAYMENT = "FundPayment"
    REIMBURSEMENT = "Reimbursement"
    CREDENTIAL_RESET = "CredentialReset"


class RequestState(str, Enum):
    """
    Every state any request kind can be in.

    Each kind only uses a subset; its WorkflowPolicy defines which
    states exist for it and how they connect.
    """
    PENDING = "Pending"
    AWAITING_VERIFICATION = "AwaitingVerification"
    PAID = "Paid"
    FAILED = "Failed"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RECEIVED = "Received"


class ActorRole(str, Enum):
    """Role supplied by the identity service for each call."""
    MEMBER = "member"
    TREASURER = "treasurer"
    SYSTEM = "system"  # External scheduler


class MemberTier(str, Enum):
    """Year tier of a member. Dues amounts are configured per tier."""
    FIRST_YEAR = "1st"
    SECOND_YEAR = "2nd"
    THIRD_YEAR = "3rd"
    FOURTH_YEAR = "4th"


# =============================================================================
# VALUE OBJECTS
# =============================================================================

class Actor(BaseModel):
    """Who is performing an action, as authenticated upstream."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1, max_length=64)
    role: ActorRole

    @property
    def is_treasurer(self) -> bool:
        return self.role == ActorRole.TREASURER


class StatusEvent(BaseModel):
    """
    One entry in a request's history.

    CRITICAL: Immutable once appended. source_state is None only for
    the creation event.
    """
    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    source_state: Optional[RequestState] = Field(
        default=None,
        description="State before the transition (None for creation)"
    )
    target_state: RequestState = Field(
        ...,
        description="State after the transition"
    )
    actor: Actor
    timestamp: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = Field(default=None, max_length=500)
    attachment_ref: Optional[str] = Field(
        default=None,
        description="URL of an attachment stored with this transition"
    )


MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


class Period(BaseModel):
    """A dues period (one calendar month)."""
    model_config = ConfigDict(frozen=True)

    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2020, le=9999)

    @property
    def label(self) -> str:
        """Human label, e.g. 'January 2026'."""
        return f"{MONTH_NAMES[self.month - 1]} {self.year}"

    @property
    def key(self) -> str:
        """Sortable key, e.g. '2026-01'."""
        return f"{self.year:04d}-{self.month:02d}"

    @classmethod
    def parse(cls, label: str) -> "Period":
        """Parse 'January 2026' (case-insensitive) or '2026-01'."""
        text = label.strip()
        match = re.fullmatch(r"(\d{4})-(\d{2})", text)
        if match:
            return cls(year=int(match.group(1)), month=int(match.group(2)))
        parts = text.split()
        if len(parts) == 2 and parts[1].isdigit():
            names = [name.lower() for name in MONTH_NAMES]
            if parts[0].lower() in names:
                return cls(month=names.index(parts[0].lower()) + 1, year=int(parts[1]))
        raise ValueError(f"Unrecognised period: {label!r}")

    def __str__(self) -> str:
        return self.label


class PayeeSnapshot(BaseModel):
    """Treasurer payee details captured when the QR was generated."""
    model_config = ConfigDict(frozen=True)

    upi_id: str = Field(..., min_length=3)
    name: str = Field(..., min_length=1, max_length=100)


class Resubmission(BaseModel):
    """Member's retry of a failed fund payment, with a new photo."""
    model_config = ConfigDict(frozen=True)

    photo_ref: str
    note: Optional[str] = None
    submitted_at: datetime = Field(default_factory=utc_now)


class TreasurerResponse(BaseModel):
    """Treasurer's payout of an approved reimbursement."""
    model_config = ConfigDict(frozen=True)

    message: str
    proof_ref: str
    responded_by: str
    responded_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class Request(BaseModel):
    """
    Abstract request shared by all kinds.

    The state field is the observable state. It must always equal the
    target state of the last history entry; AuditTrail enforces this.
    """

    id: UUID = Field(default_factory=uuid4)
    kind: RequestKind
    requester_id: str = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(
        default=None,
        description="Amount in INR (absent for credential resets)"
    )
    state: RequestState = RequestState.PENDING
    history: list[StatusEvent] = Field(default_factory=list)

    # Optimistic concurrency: bumped by the store on every write
    version: int = Field(default=0, ge=0)

    # Set while the request is open; the store keeps it unique
    open_key: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Soft delete. History is never erased.
    deleted_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    @property
    def current_state(self) -> Optional[RequestState]:
        """Target state of the most recent history entry."""
        return self.history[-1].target_state if self.history else None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def owned_by(self, actor: Actor) -> bool:
        return actor.role == ActorRole.MEMBER and actor.id == self.requester_id


class FundPaymentRequest(Request):
    """Monthly dues payment made through a UPI QR code."""

    kind: Literal[RequestKind.FUND_PAYMENT] = RequestKind.FUND_PAYMENT
    amount: Decimal = Field(..., gt=0, decimal_places=2)

    period: Period
    tier: MemberTier
    reference_code: str = Field(..., description="Immutable reconciliation code")
    payee: PayeeSnapshot
    deadline: Optional[datetime] = None

    member_confirmed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    # Exists only between a resubmission and the next verify/reject decision
    resubmission: Optional[Resubmission] = None
    resubmission_rejected: bool = False


CONTACT_NUMBER_PATTERN = r"^[6-9]\d{9}$"


class ReimbursementRequest(Request):
    """Member's claim for money spent on behalf of the club."""

    kind: Literal[RequestKind.REIMBURSEMENT] = RequestKind.REIMBURSEMENT
    amount: Decimal = Field(..., gt=0, decimal_places=2)

    description: str = Field(..., min_length=10, max_length=500)
    contact_number: str = Field(..., pattern=CONTACT_NUMBER_PATTERN)
    bill_proof_ref: str

    treasurer_response: Optional[TreasurerResponse] = None
    received_confirmed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class CredentialResetRequest(Request):
    """
    Request to replace a member's credential.

    CRITICAL: Only a reference to the candidate credential is stored,
    never the raw secret.
    """

    kind: Literal[RequestKind.CREDENTIAL_RESET] = RequestKind.CREDENTIAL_RESET
    amount: None = None

    candidate_ref: str = Field(..., min_length=1)
    rejection_reason: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    credential_applied_at: Optional[datetime] = Field(
        default=None,
        description="When the identity service took the credential (None until then)"
    )


AnyRequest = Union[FundPaymentRequest, ReimbursementRequest, CredentialResetRequest]
