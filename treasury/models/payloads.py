"""
Request Payload Models

These are the validated inputs to workflow operations. Everything a
requester or reviewer sends passes through one of these schemas first
(via errors.parse_payload), so malformed input fails with ValidationError
before any state is touched.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from treasury.models.request import CONTACT_NUMBER_PATTERN, Period


class ReviewDecision(str, Enum):
    """Reviewer's verdict on a request."""
    APPROVE = "approve"
    REJECT = "reject"


class FileUpload(BaseModel):
    """Raw attachment bytes, uploaded to object storage before a transition."""

    content: bytes = Field(..., min_length=1)
    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str

    @field_validator("mime_type")
    @classmethod
    def normalise_mime_type(cls, v: str) -> str:
        return v.strip().lower()


# An attachment is either an already-uploaded URL or bytes to upload
AttachmentInput = Union[str, FileUpload]


class FundPaymentDraft(BaseModel):
    """
    Member asks for a dues QR code for one period.

    The tier is not part of the draft; it comes from the member directory.
    """
    model_config = ConfigDict(extra="forbid")

    period: Period

    @field_validator("period", mode="before")
    @classmethod
    def parse_period_label(cls, v):
        if isinstance(v, str):
            return Period.parse(v)
        return v


class PaymentResubmissionDraft(BaseModel):
    """Member retries a failed payment with a new screenshot."""
    model_config = ConfigDict(str_strip_whitespace=True)

    photo: AttachmentInput
    note: Optional[str] = Field(default=None, max_length=300)


class ReimbursementDraft(BaseModel):
    """Member claims money spent for the club."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=10, max_length=500)
    contact_number: str = Field(..., pattern=CONTACT_NUMBER_PATTERN)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    bill_proof: AttachmentInput


class ReimbursementPayout(BaseModel):
    """
    Treasurer marks an approved claim as paid.

    CRITICAL: Both the message and the payment proof are mandatory.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    message: str = Field(..., min_length=1, max_length=500)
    proof: AttachmentInput

    @field_validator("proof")
    @classmethod
    def proof_not_blank(cls, v: AttachmentInput) -> AttachmentInput:
        if isinstance(v, str) and not v.strip():
            raise ValueError("Payment proof is required")
        return v


class CredentialResetDraft(BaseModel):
    """Member proposes a new credential (by reference, never the secret)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    candidate_ref: str = Field(..., min_length=1, max_length=255)
