"""
Tests for Aurora Treasury

Test strategy:
1. Unit tests for individual components (models, references, validators)
2. Workflow tests for each request kind (with in-memory storage)
3. No real API calls in tests (use fakes and mocks)
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pydantic
import pytest

from treasury.errors import ValidationError, parse_payload
from treasury.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from treasury.models.payloads import (
    FundPaymentDraft,
    ReimbursementDraft,
    ReimbursementPayout,
)
from treasury.models.request import (
    Actor,
    ActorRole,
    FundPaymentRequest,
    MemberTier,
    PayeeSnapshot,
    Period,
    ReimbursementRequest,
    RequestState,
    StatusEvent,
)
from treasury.models.validation import ValidationIssue, ValidationResult


def make_payment(**overrides) -> FundPaymentRequest:
    fields = dict(
        requester_id="member-1",
        amount=Decimal("100.00"),
        period=Period(month=1, year=2026),
        tier=MemberTier.SECOND_YEAR,
        reference_code="AT-FUND01-MBER01-20260103100000",
        payee=PayeeSnapshot(upi_id="treasurer@okaxis", name="AuroraTreasury"),
    )
    fields.update(overrides)
    return FundPaymentRequest(**fields)


class TestRequestModels:
    """Tests for request-related Pydantic models."""

    def test_period_parse_label(self):
        """Test Period parses a month label."""
        period = Period.parse("January 2026")
        assert period.month == 1
        assert period.year == 2026
        assert period.key == "2026-01"
        assert period.label == "January 2026"

    def test_period_parse_key_and_case(self):
        """Test Period parses keys and ignores case in labels."""
        assert Period.parse("2026-03") == Period(month=3, year=2026)
        assert Period.parse("march 2026") == Period(month=3, year=2026)

    def test_period_parse_rejects_garbage(self):
        """Test unknown period labels are rejected."""
        with pytest.raises(ValueError):
            Period.parse("Janvier 2026")

    def test_period_month_bounds(self):
        """Test month must be 1-12."""
        with pytest.raises(ValueError):
            Period(month=13, year=2026)

    def test_status_event_is_immutable(self):
        """Test StatusEvent cannot be edited once created."""
        event = StatusEvent(
            target_state=RequestState.PENDING,
            actor=Actor(id="member-1", role=ActorRole.MEMBER),
        )
        with pytest.raises(pydantic.ValidationError):
            event.target_state = RequestState.PAID

    def test_new_request_starts_pending_with_empty_history(self):
        """Test default request state."""
        payment = make_payment()
        assert payment.state == RequestState.PENDING
        assert payment.history == []
        assert payment.current_state is None
        assert payment.version == 0

    def test_fund_payment_rejects_non_positive_amount(self):
        """Test that zero amounts are rejected."""
        with pytest.raises(ValueError):
            make_payment(amount=Decimal("0"))

    def test_reimbursement_rejects_bad_contact_number(self):
        """Test contact number must be a 10-digit mobile number."""
        with pytest.raises(ValueError):
            ReimbursementRequest(
                requester_id="member-1",
                amount=Decimal("500.00"),
                description="Snacks for the meetup",
                contact_number="12345",
                bill_proof_ref="https://files.example/bill.jpg",
            )

    def test_owned_by_requires_member_role(self):
        """Test a treasurer with the same id is not the owner."""
        payment = make_payment(requester_id="shared-id")
        assert payment.owned_by(Actor(id="shared-id", role=ActorRole.MEMBER))
        assert not payment.owned_by(Actor(id="shared-id", role=ActorRole.TREASURER))
        assert not payment.owned_by(Actor(id="someone-else", role=ActorRole.MEMBER))

    def test_actor_is_treasurer(self):
        """Test Actor.is_treasurer."""
        assert Actor(id="t", role=ActorRole.TREASURER).is_treasurer
        assert not Actor(id="m", role=ActorRole.MEMBER).is_treasurer


class TestPayloadModels:
    """Tests for payload schemas."""

    def test_fund_payment_draft_accepts_label(self):
        """Test the period can be given as 'January 2026'."""
        draft = FundPaymentDraft(period="January 2026")
        assert draft.period == Period(month=1, year=2026)

    def test_fund_payment_draft_refuses_tier(self):
        """Test a member cannot declare their own tier."""
        with pytest.raises(ValidationError):
            parse_payload(FundPaymentDraft, {"period": "January 2026", "tier": "1st"})

    def test_reimbursement_draft_strips_whitespace(self):
        """Test that whitespace is stripped from the description."""
        draft = ReimbursementDraft(
            description="  Printing posters for the fest  ",
            contact_number="9876543210",
            amount="250.00",
            bill_proof="https://files.example/bill.jpg",
        )
        assert draft.description == "Printing posters for the fest"

    def test_payout_requires_proof(self):
        """Test a blank proof is rejected."""
        with pytest.raises(ValueError, match="Payment proof is required"):
            ReimbursementPayout(message="Sent via UPI", proof="   ")

    def test_parse_payload_converts_errors(self):
        """Test pydantic errors surface as treasury ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(ReimbursementPayout, {"message": "", "proof": "x"})
        issues = exc_info.value.details["issues"]
        assert issues[0]["field"] == "message"

    def test_parse_payload_passes_instances_through(self):
        """Test an already-built model is returned as is."""
        payout = ReimbursementPayout(message="Sent", proof="https://files.example/p.png")
        assert parse_payload(ReimbursementPayout, payout) is payout


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.REQUEST_CREATED,
            description="Test request created",
        )
        assert event.event_type == AuditEventType.REQUEST_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.REFERENCE_GENERATED,
            description="Reference generated",
            details={"reference": "AT-FUND01-ABC123-20260117145030"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "reference_generated"
        assert log_dict["details"]["reference"] == "AT-FUND01-ABC123-20260117145030"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSITION_REFUSED,
            description="Refused approve",
            actor_id="treasurer-01",
            error_code="invalid_state_transition",
        )
        row = event.to_sheets_row()
        assert len(row) == 13  # Expected number of columns
        assert row[2] == "transition_refused"
        assert row[7] == "treasurer-01"
        assert row[11] == "invalid_state_transition"

    def test_audit_event_builder_transition(self):
        """Test AuditEventBuilder.transition."""
        payment = make_payment()
        correlation_id = uuid4()
        event = StatusEvent(
            source_state=RequestState.PENDING,
            target_state=RequestState.AWAITING_VERIFICATION,
            actor=Actor(id="member-1", role=ActorRole.MEMBER),
            timestamp=datetime(2026, 1, 3, tzinfo=timezone.utc),
        )

        audit = AuditEventBuilder.transition(payment, event, correlation_id)

        assert audit.event_type == AuditEventType.REQUEST_TRANSITIONED
        assert audit.entity_id == payment.id
        assert audit.entity_type == "FundPayment"
        assert audit.correlation_id == correlation_id
        assert audit.details["source_state"] == "Pending"
        assert audit.details["target_state"] == "AwaitingVerification"

    def test_audit_event_builder_refusal_is_warning(self):
        """Test refused transitions are logged as warnings."""
        audit = AuditEventBuilder.transition_refused(
            make_payment(),
            action="approve",
            actor_id="treasurer-01",
            error_code="invalid_state_transition",
            error_message="Cannot approve",
        )
        assert audit.severity == AuditSeverity.WARNING
        assert audit.details["current_state"] == "Pending"


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            request_id=uuid4(),
            schema_valid=False,
            semantic_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="reference_code",
                    issue_type="malformed",
                    message="Not a reference code",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            request_id=uuid4(),
            schema_valid=True,
            semantic_valid=True,
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="member_confirmed_at",
                    issue_type="late",
                    message="Paid after the deadline",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
