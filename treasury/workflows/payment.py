"""
Fund Payment Workflow

Monthly dues, paid by UPI with no gateway:

    Pending --confirm--> AwaitingVerification --verify--> Paid
                                              --reject--> Failed
    Failed --resubmit (photo + note)--> AwaitingVerification
    Pending --expire (scheduler, auto_fail policy only)--> Failed

Paid is absorbing. So is a Failed reached by rejecting a resubmission.

Idempotency:
- generate_qr for a period that already has an open request returns it
- confirm_payment on an AwaitingVerification request returns it unchanged

The dues amount is priced from the member directory's tier for the
requester, never from anything the member sends.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from treasury.audit import AuditLogger, AuditTrail
from treasury.config.settings import TreasurySettings
from treasury.errors import (
    DuplicateActiveRequest,
    Forbidden,
    InvalidStateTransition,
    ValidationError,
    parse_payload,
)
from treasury.models.payloads import FundPaymentDraft, PaymentResubmissionDraft
from treasury.models.request import (
    Actor,
    ActorRole,
    FundPaymentRequest,
    PayeeSnapshot,
    RequestKind,
    RequestState,
    Resubmission,
    StatusEvent,
    utc_now,
)
from treasury.references import ReferenceCodeGenerator, build_upi_link
from treasury.services.attachments import AttachmentStorageInterface
from treasury.services.club_settings import ClubSettingsInterface, TreasurerNotConfiguredError
from treasury.services.members import MemberDirectoryInterface, UnknownMemberError
from treasury.services.storage import RequestStoreInterface
from treasury.validation import PaymentVerificationValidator
from treasury.workflows.lifecycle import RequestLifecycle
from treasury.workflows.policies import PAYMENT_POLICY, LifecycleAction

PROOF_FOLDER = "payment-resubmissions"
DEADLINE_REASON = "deadline passed"


class PaymentQR(BaseModel):
    """Everything the member's app needs to render and pay a QR code."""

    request: FundPaymentRequest
    upi_link: str
    reference: str
    amount: Decimal
    payee: PayeeSnapshot
    instructions: list[str] = Field(default_factory=list)


class PaymentSummary(BaseModel):
    """
    Per-member dues overview.

    Counts are per request. Outstanding is per period: a period with a
    Paid request is settled however many earlier attempts failed.
    """

    requester_id: str
    paid_count: int = 0
    pending_count: int = 0
    awaiting_verification_count: int = 0
    failed_count: int = 0
    total_paid: Decimal = Decimal("0.00")
    total_outstanding: Decimal = Decimal("0.00")
    paid_periods: list[str] = Field(default_factory=list)
    outstanding_periods: list[str] = Field(default_factory=list)


class PaymentWorkflow:
    """Fund payment specialization of RequestLifecycle."""

    def __init__(
        self,
        store: RequestStoreInterface,
        club_settings: ClubSettingsInterface,
        members: MemberDirectoryInterface,
        generator: ReferenceCodeGenerator,
        treasury_settings: TreasurySettings,
        attachments: Optional[AttachmentStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        trail: Optional[AuditTrail] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.lifecycle = RequestLifecycle(
            PAYMENT_POLICY,
            store,
            trail=trail,
            attachments=attachments,
            audit_logger=audit_logger,
            clock=clock,
        )
        self._store = store
        self._club = club_settings
        self._members = members
        self._generator = generator
        self._settings = treasury_settings
        self._validator = PaymentVerificationValidator(
            store, club_settings, members, kind_code=generator.kind_code
        )
        self.lifecycle.on_enter(RequestState.PAID, self._on_paid)
        self.lifecycle.on_enter(RequestState.FAILED, self._on_failed)

    # =========================================================================
    # HOOKS
    # =========================================================================

    async def _on_paid(self, request: FundPaymentRequest, event: StatusEvent) -> None:
        request.verified_at = event.timestamp
        request.verified_by = event.actor.id
        request.rejection_reason = None
        request.resubmission = None

    async def _on_failed(self, request: FundPaymentRequest, event: StatusEvent) -> None:
        request.rejection_reason = event.reason
        if request.resubmission is not None:
            # A rejected retry ends the obligation's retries
            request.resubmission_rejected = True
            request.resubmission = None

    # =========================================================================
    # QR GENERATION
    # =========================================================================

    def _instructions(self, request: FundPaymentRequest) -> list[str]:
        return [
            f"Pay ₹{request.amount} to {request.payee.name} ({request.payee.upi_id})",
            f"Dues for {request.period.label}",
            "Do not change the payment note; it carries your reference code",
            "Confirm the payment here once the transfer succeeds",
        ]

    def build_qr(self, request: FundPaymentRequest) -> PaymentQR:
        """QR payload from the stored request (payee as it was at generation)."""
        return PaymentQR(
            request=request,
            upi_link=build_upi_link(
                upi_id=request.payee.upi_id,
                amount=request.amount,
                reference=request.reference_code,
                payee_name=request.payee.name,
            ),
            reference=request.reference_code,
            amount=request.amount,
            payee=request.payee,
            instructions=self._instructions(request),
        )

    async def generate_qr(
        self,
        actor: Actor,
        draft: Union[FundPaymentDraft, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> PaymentQR:
        """
        Create (or return) the member's payment request for a period.

        Returns the existing request if one is open for the period.

        Raises:
            Forbidden: Actor is not a member
            ValidationError: Bad draft, unknown member, or treasurer UPI
                not configured
            DuplicateActiveRequest: The period is already Paid
            ReferenceExhausted: No free reference code
        """
        if actor.role != ActorRole.MEMBER:
            raise Forbidden("Only members can generate payment QR codes")
        draft = parse_payload(FundPaymentDraft, draft)

        try:
            payee = self._club.payee()
        except TreasurerNotConfiguredError as e:
            raise ValidationError(str(e)) from e
        try:
            tier = self._members.tier_for(actor.id)
        except UnknownMemberError as e:
            raise ValidationError(str(e)) from e
        amount = self._club.tier_amount(tier)
        if amount <= 0:
            raise ValidationError(f"No dues configured for {tier.value} year members")

        async with self._generator.lock_for(actor.id):
            existing = await self._store.find(
                kind=RequestKind.FUND_PAYMENT,
                requester_id=actor.id,
                period_key=draft.period.key,
            )
            for request in existing:
                if request.state in PAYMENT_POLICY.open_states:
                    return self.build_qr(request)
            for request in existing:
                if request.state == RequestState.PAID:
                    raise DuplicateActiveRequest(
                        f"{draft.period.label} is already paid",
                        existing_id=request.id,
                    )

            request_id = uuid4()
            reference = await self._generator.generate_locked(
                actor.id, request_id, correlation_id
            )
            request = FundPaymentRequest(
                id=request_id,
                requester_id=actor.id,
                amount=amount,
                period=draft.period,
                tier=tier,
                reference_code=reference,
                payee=payee,
                deadline=self._club.deadline_for(draft.period),
            )
            try:
                saved = await self.lifecycle.submit(actor, request, correlation_id)
            except DuplicateActiveRequest as e:
                # Lost a race with another process; theirs wins
                await self._generator.release(reference, request_id, correlation_id)
                saved = await self.lifecycle.get(e.existing_id)
            except Exception:
                await self._generator.release(reference, request_id, correlation_id)
                raise

        return self.build_qr(saved)

    submit = generate_qr

    # =========================================================================
    # MEMBER ACTIONS
    # =========================================================================

    async def confirm_payment(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> FundPaymentRequest:
        """Member says they paid. A repeat call is a no-op."""
        def apply(request: FundPaymentRequest, _ref: Optional[str]) -> None:
            request.member_confirmed_at = self.lifecycle.now()

        return await self.lifecycle.transition(
            request_id,
            LifecycleAction.CONFIRM,
            actor,
            apply=apply,
            idempotent_in=RequestState.AWAITING_VERIFICATION,
            correlation_id=correlation_id,
        )

    confirm = confirm_payment

    async def resubmit(
        self,
        request_id: UUID,
        actor: Actor,
        draft: Union[PaymentResubmissionDraft, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> FundPaymentRequest:
        """
        Retry a Failed payment with a new screenshot.

        Raises:
            InvalidStateTransition: Not Failed, or a resubmission was
                already rejected
            DuplicateActiveRequest: Another open request exists for the period
        """
        draft = parse_payload(PaymentResubmissionDraft, draft)

        async def guard(request: FundPaymentRequest) -> None:
            if request.resubmission_rejected:
                raise InvalidStateTransition(
                    "This payment's resubmission was already rejected",
                    current_state=request.state.value,
                    action=LifecycleAction.RESUBMIT.value,
                )

        def apply(request: FundPaymentRequest, photo_ref: Optional[str]) -> None:
            request.resubmission = Resubmission(
                photo_ref=photo_ref,
                note=draft.note,
                submitted_at=self.lifecycle.now(),
            )
            request.member_confirmed_at = self.lifecycle.now()

        return await self.lifecycle.resubmit(
            request_id,
            actor,
            attachment=draft.photo,
            note=draft.note,
            attachment_folder=PROOF_FOLDER,
            guard=guard,
            apply=apply,
            correlation_id=correlation_id,
        )

    async def delete(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> FundPaymentRequest:
        return await self.lifecycle.delete(request_id, actor, correlation_id)

    # =========================================================================
    # TREASURER ACTIONS
    # =========================================================================

    async def verify(
        self,
        request_id: UUID,
        actor: Actor,
        statement_reference: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> FundPaymentRequest:
        """
        Treasurer attests the money arrived.

        Raises:
            InvalidStateTransition: Not AwaitingVerification
            ValidationError: Reference or amount checks failed
        """
        async def guard(request: FundPaymentRequest) -> None:
            await self._validator.ensure_valid(request, statement_reference)

        return await self.lifecycle.transition(
            request_id,
            LifecycleAction.APPROVE,
            actor,
            guard=guard,
            correlation_id=correlation_id,
        )

    async def reject(
        self,
        request_id: UUID,
        actor: Actor,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> FundPaymentRequest:
        """Treasurer could not find the money. Reason is mandatory."""
        return await self.lifecycle.transition(
            request_id,
            LifecycleAction.REJECT,
            actor,
            reason=reason,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # EXPIRY (called by an external scheduler)
    # =========================================================================

    async def overdue(self, now: Optional[datetime] = None) -> list[FundPaymentRequest]:
        """Pending payments whose deadline has passed."""
        now = now or self.lifecycle.now()
        pending = await self._store.find(
            kind=RequestKind.FUND_PAYMENT,
            states=[RequestState.PENDING],
        )
        return [r for r in pending if r.deadline is not None and r.deadline < now]

    async def expire(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> FundPaymentRequest:
        """
        Fail an overdue Pending payment.

        Raises:
            ValidationError: Policy is 'retain', or the deadline has not passed
        """
        async def guard(request: FundPaymentRequest) -> None:
            if self._settings.payment_expiry_policy != "auto_fail":
                raise ValidationError("Expiry policy is 'retain'; overdue payments stay Pending")
            if request.deadline is None or request.deadline >= self.lifecycle.now():
                raise ValidationError(f"Deadline for {request.period.label} has not passed")

        return await self.lifecycle.transition(
            request_id,
            LifecycleAction.EXPIRE,
            actor,
            reason=DEADLINE_REASON,
            guard=guard,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get(self, request_id: UUID, actor: Actor) -> FundPaymentRequest:
        return await self.lifecycle.get_for(request_id, actor)

    async def history(self, request_id: UUID, actor: Actor) -> list[StatusEvent]:
        return await self.lifecycle.history(request_id, actor)

    def _resolve_requester(self, actor: Actor, requester_id: Optional[str]) -> Optional[str]:
        if actor.is_treasurer:
            return requester_id
        if actor.role != ActorRole.MEMBER:
            raise Forbidden("Only members and treasurers can list payments")
        if requester_id is not None and requester_id != actor.id:
            raise Forbidden("Members can only see their own payments")
        return actor.id

    async def list_payments(
        self,
        actor: Actor,
        requester_id: Optional[str] = None,
        include_archived: bool = False,
    ) -> list[FundPaymentRequest]:
        requester_id = self._resolve_requester(actor, requester_id)
        requests = await self._store.find(
            kind=RequestKind.FUND_PAYMENT,
            requester_id=requester_id,
        )
        if not include_archived:
            requests = [r for r in requests if not r.is_archived]
        return sorted(requests, key=lambda r: (r.period.key, r.created_at))

    async def failed_payments(
        self,
        actor: Actor,
        requester_id: Optional[str] = None,
    ) -> list[FundPaymentRequest]:
        """Failed payments; resubmittable ones are those not resubmission_rejected."""
        requester_id = self._resolve_requester(actor, requester_id)
        return await self._store.find(
            kind=RequestKind.FUND_PAYMENT,
            requester_id=requester_id,
            states=[RequestState.FAILED],
        )

    async def pending_verification(self, actor: Actor) -> list[FundPaymentRequest]:
        """The treasurer's queue, oldest confirmation first."""
        if not actor.is_treasurer:
            raise Forbidden("Only the treasurer can see the verification queue")
        queue = await self._store.find(
            kind=RequestKind.FUND_PAYMENT,
            states=[RequestState.AWAITING_VERIFICATION],
        )
        return sorted(queue, key=lambda r: r.member_confirmed_at or r.created_at)

    async def summary(
        self,
        actor: Actor,
        requester_id: Optional[str] = None,
    ) -> PaymentSummary:
        """Counts and totals for one member (treasurers must name the member)."""
        requester_id = self._resolve_requester(actor, requester_id)
        if requester_id is None:
            raise ValidationError("requester_id is required")

        summary = PaymentSummary(requester_id=requester_id)
        by_period: dict[str, list[FundPaymentRequest]] = {}
        for request in await self._store.find(
            kind=RequestKind.FUND_PAYMENT,
            requester_id=requester_id,
        ):
            by_period.setdefault(request.period.key, []).append(request)
            if request.state == RequestState.PAID:
                summary.paid_count += 1
                summary.total_paid += request.amount
                summary.paid_periods.append(request.period.label)
            elif request.state == RequestState.PENDING:
                summary.pending_count += 1
            elif request.state == RequestState.AWAITING_VERIFICATION:
                summary.awaiting_verification_count += 1
            elif request.state == RequestState.FAILED:
                summary.failed_count += 1

        for key in sorted(by_period):
            attempts = by_period[key]
            states = {r.state for r in attempts}
            # Settled, or the money is claimed sent and under review
            if states & {RequestState.PAID, RequestState.AWAITING_VERIFICATION}:
                continue
            latest = max(attempts, key=lambda r: r.created_at)
            summary.total_outstanding += latest.amount
            summary.outstanding_periods.append(latest.period.label)
        return summary
