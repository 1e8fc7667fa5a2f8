"""
Verification Result Models

Produced by PaymentVerificationValidator before a payment can become
Paid. Problems are reported, never fixed in place.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from treasury.models.request import utc_now

IssueSeverity = Literal["error", "warning", "info"]


class ValidationIssue(BaseModel):
    """One problem found with a payment. Only 'error' blocks verification."""

    field: str = Field(..., description="Request field the check looked at")
    issue_type: str = Field(
        ...,
        description="malformed, tampered, mismatch or late"
    )
    message: str = Field(..., description="What the treasurer sees")
    severity: IssueSeverity
    suggested_fix: Optional[str] = Field(
        default=None,
        description="What the treasurer can do about it"
    )


class ValidationResult(BaseModel):
    """
    Outcome of checking one payment.

    schema_valid covers the reference grammar. semantic_valid covers the
    reference registry, owner and kind slices, the tier amount and the
    statement note; it is False when the schema stage already failed.
    """

    request_id: UUID
    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list, description="Messages of warning issues")

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    @property
    def error_count(self) -> int:
        return len([issue for issue in self.issues if issue.severity == "error"])
