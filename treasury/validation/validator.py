"""
Two-Stage Payment Verification

DESIGN DECISION: Verification is an attestation by the treasurer, not
bank matching. Before a payment can move to Paid we check, in two
distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- The stored reference code follows the grammar
- A reference typed in by the treasurer (from the statement note), if
  given, follows the grammar too

STAGE 2 - SEMANTIC VALIDATION:
- The stored reference is the one issued for this request (tamper defense)
- The code's owner slice and kind code match the request
- The amount matches the dues for the member's tier in the member
  directory (not the tier stored on the request)
- The statement reference, if given, matches exactly
- Late payment (after the deadline) is a warning only

IMPORTANT: Validation NEVER silently fixes issues.
It reports them, and the workflow refuses to verify.
"""

from typing import Optional

from treasury.errors import MalformedReference, ValidationError
from treasury.models.request import FundPaymentRequest
from treasury.models.validation import ValidationIssue, ValidationResult
from treasury.references import owner_short, parse_reference
from treasury.services.club_settings import ClubSettingsInterface
from treasury.services.members import MemberDirectoryInterface, UnknownMemberError
from treasury.services.storage import RequestStoreInterface


class PaymentVerificationValidator:
    """
    Validates a fund payment before the treasurer marks it Paid.

    Stage 1: Schema validation (no storage needed)
    Stage 2: Semantic validation (reference registry, member directory
             and club settings)
    """

    def __init__(
        self,
        store: RequestStoreInterface,
        club_settings: ClubSettingsInterface,
        members: MemberDirectoryInterface,
        kind_code: str = "01",
    ):
        self._store = store
        self._club = club_settings
        self._members = members
        self._kind_code = kind_code

    def _validate_schema(
        self,
        request: FundPaymentRequest,
        statement_reference: Optional[str],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        try:
            parse_reference(request.reference_code)
        except MalformedReference as e:
            issues.append(ValidationIssue(
                field="reference_code",
                issue_type="malformed",
                message=e.message,
                severity="error",
                suggested_fix="The stored reference was altered; do not verify this payment",
            ))

        if statement_reference is not None:
            try:
                parse_reference(statement_reference)
            except MalformedReference as e:
                issues.append(ValidationIssue(
                    field="statement_reference",
                    issue_type="malformed",
                    message=e.message,
                    severity="error",
                    suggested_fix="Copy the transaction note exactly as it appears",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _check_amount(self, request: FundPaymentRequest) -> list[ValidationIssue]:
        try:
            tier = self._members.tier_for(request.requester_id)
        except UnknownMemberError as e:
            return [ValidationIssue(
                field="requester_id",
                issue_type="mismatch",
                message=str(e),
                severity="error",
            )]

        expected = self._club.tier_amount(tier)
        if request.amount == expected:
            return []
        return [ValidationIssue(
            field="amount",
            issue_type="mismatch",
            message=(
                f"Amount ₹{request.amount} does not match the "
                f"{tier.value} year dues of ₹{expected}"
            ),
            severity="error",
            suggested_fix="Reject with reason 'amount mismatch'",
        )]

    async def _validate_semantic(
        self,
        request: FundPaymentRequest,
        statement_reference: Optional[str],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        parsed = parse_reference(request.reference_code)

        holder = await self._store.get_reference_holder(request.reference_code)
        if holder != request.id:
            issues.append(ValidationIssue(
                field="reference_code",
                issue_type="tampered",
                message="Reference code was not issued for this request",
                severity="error",
            ))

        if parsed.owner_short != owner_short(request.requester_id):
            issues.append(ValidationIssue(
                field="reference_code",
                issue_type="mismatch",
                message="Reference code belongs to a different member",
                severity="error",
            ))

        if parsed.kind_code != self._kind_code:
            issues.append(ValidationIssue(
                field="reference_code",
                issue_type="mismatch",
                message=f"Reference is for fund kind {parsed.kind_code}, expected {self._kind_code}",
                severity="error",
            ))

        issues.extend(self._check_amount(request))

        if statement_reference is not None and statement_reference != request.reference_code:
            issues.append(ValidationIssue(
                field="statement_reference",
                issue_type="mismatch",
                message="Statement note does not match this request's reference",
                severity="error",
                suggested_fix="Look for the transfer carrying this member's reference",
            ))

        if request.deadline and request.member_confirmed_at and request.member_confirmed_at > request.deadline:
            issues.append(ValidationIssue(
                field="member_confirmed_at",
                issue_type="late",
                message=f"Paid after the {request.period.label} deadline",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def validate(
        self,
        request: FundPaymentRequest,
        statement_reference: Optional[str] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            request: The payment about to be verified
            statement_reference: Note from the bank statement, if the
                treasurer supplied one

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(request, statement_reference)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = await self._validate_semantic(
                request, statement_reference
            )
            all_issues.extend(semantic_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            request_id=request.id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    async def ensure_valid(
        self,
        request: FundPaymentRequest,
        statement_reference: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate and raise on any error-level issue.

        Raises:
            ValidationError: With every issue listed in details["issues"]
        """
        result = await self.validate(request, statement_reference)
        if not result.is_valid:
            raise ValidationError(
                self.get_summary(result),
                details={"issues": [issue.model_dump() for issue in result.issues]},
            )
        return result

    def get_summary(self, result: ValidationResult) -> str:
        """One-line summary for error messages and the activity log."""
        if result.is_valid and not result.warnings:
            return "All verification checks passed"
        errors = [issue.message for issue in result.issues if issue.severity == "error"]
        if errors:
            return "Verification failed: " + "; ".join(errors)
        return "Verified with warnings: " + "; ".join(result.warnings)
