"""
Reimbursement Workflow

    Pending --approve--> Approved --mark_paid (message + proof)--> Paid
            --reject (reason)--> Rejected
    Paid --confirm_receipt (requester)--> Received

Rejected is final for the claim. A claim is tied to one bill, so a new
attempt is a new submission.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

from pydantic import BaseModel

from treasury.audit import AuditLogger, AuditTrail
from treasury.config.settings import TreasurySettings
from treasury.errors import Forbidden, ValidationError, parse_payload
from treasury.models.payloads import ReimbursementDraft, ReimbursementPayout, ReviewDecision
from treasury.models.request import (
    Actor,
    ActorRole,
    ReimbursementRequest,
    RequestKind,
    RequestState,
    StatusEvent,
    TreasurerResponse,
    utc_now,
)
from treasury.services.attachments import AttachmentStorageInterface
from treasury.services.storage import RequestStoreInterface
from treasury.workflows.lifecycle import RequestLifecycle
from treasury.workflows.policies import REIMBURSEMENT_POLICY

BILL_FOLDER = "reimbursement-bills"
PAYOUT_FOLDER = "reimbursement-proofs"


class ReimbursementStatistics(BaseModel):
    """Counts by state and money totals for one member."""

    requester_id: str
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    paid: int = 0
    received: int = 0
    total_requested: Decimal = Decimal("0.00")
    total_reimbursed: Decimal = Decimal("0.00")


class ReimbursementWorkflow:
    """Reimbursement specialization of RequestLifecycle."""

    def __init__(
        self,
        store: RequestStoreInterface,
        treasury_settings: TreasurySettings,
        attachments: Optional[AttachmentStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        trail: Optional[AuditTrail] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.lifecycle = RequestLifecycle(
            REIMBURSEMENT_POLICY,
            store,
            trail=trail,
            attachments=attachments,
            audit_logger=audit_logger,
            clock=clock,
        )
        self._store = store
        self._settings = treasury_settings
        self.lifecycle.on_enter(RequestState.REJECTED, self._on_rejected)
        self.lifecycle.on_enter(RequestState.RECEIVED, self._on_received)

    async def _on_rejected(self, request: ReimbursementRequest, event: StatusEvent) -> None:
        request.rejection_reason = event.reason

    async def _on_received(self, request: ReimbursementRequest, event: StatusEvent) -> None:
        request.received_confirmed_at = event.timestamp

    async def submit(
        self,
        actor: Actor,
        draft: Union[ReimbursementDraft, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> ReimbursementRequest:
        """
        File a claim with its bill.

        Raises:
            Forbidden: Actor is not a member
            ValidationError: Bad draft, amount above the limit, or bad bill file
        """
        if actor.role != ActorRole.MEMBER:
            raise Forbidden("Only members can request reimbursements")
        draft = parse_payload(ReimbursementDraft, draft)
        if draft.amount > self._settings.reimbursement_max_amount:
            raise ValidationError(
                f"Amount ₹{draft.amount} exceeds the limit of "
                f"₹{self._settings.reimbursement_max_amount}"
            )

        bill_ref = await self.lifecycle.store_attachment(draft.bill_proof, BILL_FOLDER, correlation_id)
        request = ReimbursementRequest(
            requester_id=actor.id,
            amount=draft.amount,
            description=draft.description,
            contact_number=draft.contact_number,
            bill_proof_ref=bill_ref,
        )
        return await self.lifecycle.submit(actor, request, correlation_id)

    async def review(
        self,
        request_id: UUID,
        actor: Actor,
        decision: ReviewDecision,
        reason: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReimbursementRequest:
        return await self.lifecycle.review(
            request_id, actor, decision, reason, correlation_id=correlation_id
        )

    async def approve(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> ReimbursementRequest:
        return await self.review(request_id, actor, ReviewDecision.APPROVE, None, correlation_id)

    async def reject(
        self,
        request_id: UUID,
        actor: Actor,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> ReimbursementRequest:
        return await self.review(request_id, actor, ReviewDecision.REJECT, reason, correlation_id)

    async def mark_paid(
        self,
        request_id: UUID,
        actor: Actor,
        payout: Union[ReimbursementPayout, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> ReimbursementRequest:
        """
        Treasurer pays an approved claim.

        Both the message and the proof of payment are mandatory.
        """
        payout = parse_payload(ReimbursementPayout, payout)

        def apply(request: ReimbursementRequest, proof_ref: Optional[str]) -> None:
            request.treasurer_response = TreasurerResponse(
                message=payout.message,
                proof_ref=proof_ref,
                responded_by=actor.id,
                responded_at=self.lifecycle.now(),
            )

        return await self.lifecycle.fulfill(
            request_id,
            actor,
            attachment=payout.proof,
            reason=payout.message,
            attachment_folder=PAYOUT_FOLDER,
            apply=apply,
            correlation_id=correlation_id,
        )

    fulfill = mark_paid

    async def confirm_receipt(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> ReimbursementRequest:
        """Requester confirms the money arrived. Final."""
        return await self.lifecycle.confirm_receipt(
            request_id, actor, correlation_id=correlation_id
        )

    async def delete(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> ReimbursementRequest:
        return await self.lifecycle.delete(request_id, actor, correlation_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get(self, request_id: UUID, actor: Actor) -> ReimbursementRequest:
        return await self.lifecycle.get_for(request_id, actor)

    async def history(self, request_id: UUID, actor: Actor) -> list[StatusEvent]:
        return await self.lifecycle.history(request_id, actor)

    async def list_for_member(self, actor: Actor) -> list[ReimbursementRequest]:
        """The member's own claims, newest first, without archived ones."""
        if actor.role != ActorRole.MEMBER:
            raise Forbidden("Only members have a claims list")
        requests = await self._store.find(
            kind=RequestKind.REIMBURSEMENT,
            requester_id=actor.id,
        )
        return sorted(
            (r for r in requests if not r.is_archived),
            key=lambda r: r.created_at,
            reverse=True,
        )

    async def list_for_treasurer(
        self,
        actor: Actor,
        states: Optional[list[RequestState]] = None,
    ) -> list[ReimbursementRequest]:
        """All live claims, oldest first (archived ones included)."""
        if not actor.is_treasurer:
            raise Forbidden("Only the treasurer can list all claims")
        return await self._store.find(kind=RequestKind.REIMBURSEMENT, states=states)

    async def statistics(
        self,
        actor: Actor,
        requester_id: Optional[str] = None,
    ) -> ReimbursementStatistics:
        if actor.is_treasurer:
            if requester_id is None:
                raise ValidationError("requester_id is required")
        elif requester_id not in (None, actor.id):
            raise Forbidden("Members can only see their own statistics")
        requester_id = requester_id or actor.id

        stats = ReimbursementStatistics(requester_id=requester_id)
        counters = {
            RequestState.PENDING: "pending",
            RequestState.APPROVED: "approved",
            RequestState.REJECTED: "rejected",
            RequestState.PAID: "paid",
            RequestState.RECEIVED: "received",
        }
        for request in await self._store.find(
            kind=RequestKind.REIMBURSEMENT,
            requester_id=requester_id,
        ):
            stats.total += 1
            field = counters[request.state]
            setattr(stats, field, getattr(stats, field) + 1)
            stats.total_requested += request.amount
            if request.state in (RequestState.PAID, RequestState.RECEIVED):
                stats.total_reimbursed += request.amount
        return stats
