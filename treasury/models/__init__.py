"""
Data Models Package

This package contains all Pydantic models used in Aurora Treasury.
All data flowing through the workflows must conform to these schemas.
"""

from treasury.models.request import (
    Actor,
    ActorRole,
    AnyRequest,
    CredentialResetRequest,
    FundPaymentRequest,
    MemberTier,
    PayeeSnapshot,
    Period,
    ReimbursementRequest,
    Request,
    RequestKind,
    RequestState,
    Resubmission,
    StatusEvent,
    TreasurerResponse,
    utc_now,
)
from treasury.models.payloads import (
    AttachmentInput,
    CredentialResetDraft,
    FileUpload,
    FundPaymentDraft,
    PaymentResubmissionDraft,
    ReimbursementDraft,
    ReimbursementPayout,
    ReviewDecision,
)
from treasury.models.validation import ValidationIssue, ValidationResult
from treasury.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Request models
    "Actor",
    "ActorRole",
    "AnyRequest",
    "CredentialResetRequest",
    "FundPaymentRequest",
    "MemberTier",
    "PayeeSnapshot",
    "Period",
    "ReimbursementRequest",
    "Request",
    "RequestKind",
    "RequestState",
    "Resubmission",
    "StatusEvent",
    "TreasurerResponse",
    "utc_now",
    # Payloads
    "AttachmentInput",
    "CredentialResetDraft",
    "FileUpload",
    "FundPaymentDraft",
    "PaymentResubmissionDraft",
    "ReimbursementDraft",
    "ReimbursementPayout",
    "ReviewDecision",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
