"""
Reconciliation Advisor

Read-only helpers for the treasurer's manual matching of bank statement
lines to payments awaiting verification.

DESIGN DECISION: Reference display is a boundary policy, not a security
control. The code was never a secret on the server side, but once a
member has confirmed a payment their screen shows it masked, so nobody
reading over their shoulder can copy another member's exact note.
The treasurer always sees it in full because that is what they match on.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from treasury.errors import Forbidden
from treasury.models.request import Actor, FundPaymentRequest, RequestState
from treasury.references import mask_reference
from treasury.workflows.payment import PaymentWorkflow


class ReconciliationEntry(BaseModel):
    """One payment in the treasurer's queue."""

    request_id: UUID
    requester_id: str
    period: str
    amount: Decimal
    reference: str
    confirmed_at: Optional[datetime] = None
    is_resubmission: bool = False
    proof_ref: Optional[str] = None


class AmountGroup(BaseModel):
    """Queue entries sharing an amount. More than one means matching by amount alone is ambiguous."""

    amount: Decimal
    entries: list[ReconciliationEntry] = Field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return len(self.entries) > 1


class ReconciliationMatch(BaseModel):
    """Result of matching one statement line."""

    entry: ReconciliationEntry
    amount_matches: bool


class ReconciliationAdvisor:
    """Treasurer-facing view over the payment verification queue."""

    def __init__(self, payments: PaymentWorkflow, filler: str = "x"):
        self._payments = payments
        self._filler = filler

    @staticmethod
    def _entry(request: FundPaymentRequest) -> ReconciliationEntry:
        return ReconciliationEntry(
            request_id=request.id,
            requester_id=request.requester_id,
            period=request.period.label,
            amount=request.amount,
            reference=request.reference_code,
            confirmed_at=request.member_confirmed_at,
            is_resubmission=request.resubmission is not None,
            proof_ref=request.resubmission.photo_ref if request.resubmission else None,
        )

    async def pending_queue(self, actor: Actor) -> list[ReconciliationEntry]:
        """Payments awaiting verification, unmasked, oldest confirmation first."""
        queue = await self._payments.pending_verification(actor)
        return [self._entry(request) for request in queue]

    async def group_by_amount(self, actor: Actor) -> list[AmountGroup]:
        """Queue grouped by amount, smallest first."""
        groups: dict[Decimal, AmountGroup] = {}
        for entry in await self.pending_queue(actor):
            groups.setdefault(entry.amount, AmountGroup(amount=entry.amount)).entries.append(entry)
        return [groups[amount] for amount in sorted(groups)]

    async def match(
        self,
        actor: Actor,
        amount: Decimal,
        note: str,
    ) -> Optional[ReconciliationMatch]:
        """
        Find the queued payment a statement line belongs to.

        The note must equal the reference exactly; no trimming or case
        folding. Returns None when nothing in the queue carries the note.
        """
        for entry in await self.pending_queue(actor):
            if entry.reference == note:
                return ReconciliationMatch(
                    entry=entry,
                    amount_matches=Decimal(amount) == entry.amount,
                )
        return None

    def reference_for(self, actor: Actor, request: FundPaymentRequest) -> str:
        """
        The reference as this actor may see it.

        Treasurer: always in full. Owner: in full while Pending (they
        still need it to pay), masked afterwards.
        """
        if actor.is_treasurer:
            return request.reference_code
        if not request.owned_by(actor):
            raise Forbidden("Members can only see their own references")
        if request.state == RequestState.PENDING:
            return request.reference_code
        return mask_reference(request.reference_code, self._filler)

    def member_view(self, actor: Actor, request: FundPaymentRequest) -> FundPaymentRequest:
        """Copy of the request with the reference shown per reference_for()."""
        return request.model_copy(
            update={"reference_code": self.reference_for(actor, request)}
        )
