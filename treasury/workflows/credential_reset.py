"""
Credential Reset Workflow

    Pending --approve--> Approved (then the credential is applied)
            --reject (reason)--> Rejected

Both outcomes are final. At most one Pending request per identity: a
repeat submit returns the Pending one. After a rejection the member must
propose a different candidate.

CRITICAL: Only a reference to the candidate credential is ever stored.

The credential is applied only after the Approved write wins the
compare-and-set, so a concurrent rejection can never leave a live
credential behind a Rejected request. If the identity service then
fails, the request stays Approved with credential_applied_at unset and
the treasurer calls retry_apply().
"""

from datetime import datetime
from typing import Any, Callable, Optional, Union
from uuid import UUID

from pydantic import BaseModel

from treasury.audit import AuditLogger, AuditTrail
from treasury.errors import (
    CredentialNotApplied,
    DuplicateActiveRequest,
    Forbidden,
    InvalidStateTransition,
    ValidationError,
    parse_payload,
)
from treasury.models.payloads import CredentialResetDraft, ReviewDecision
from treasury.models.request import (
    Actor,
    ActorRole,
    CredentialResetRequest,
    RequestKind,
    RequestState,
    StatusEvent,
    utc_now,
)
from treasury.services.credentials import CredentialStoreInterface
from treasury.services.storage import RequestStoreInterface
from treasury.workflows.lifecycle import RequestLifecycle
from treasury.workflows.policies import (
    CREDENTIAL_RESET_POLICY,
    LifecycleAction,
    credential_reset_key,
)


class CredentialResetStatus(BaseModel):
    """What the member sees when checking on their reset."""

    identity_id: str
    has_request: bool
    request_id: Optional[UUID] = None
    state: Optional[RequestState] = None
    created_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    credential_applied: bool = False
    rejection_reason: Optional[str] = None


class CredentialResetWorkflow:
    """Credential reset specialization of RequestLifecycle."""

    def __init__(
        self,
        store: RequestStoreInterface,
        credential_store: CredentialStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        trail: Optional[AuditTrail] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.lifecycle = RequestLifecycle(
            CREDENTIAL_RESET_POLICY,
            store,
            trail=trail,
            audit_logger=audit_logger,
            clock=clock,
        )
        self._store = store
        self._credentials = credential_store
        self._audit_logger = audit_logger
        self.lifecycle.on_enter(RequestState.APPROVED, self._on_approved)
        self.lifecycle.on_enter(RequestState.REJECTED, self._on_rejected)
        self.lifecycle.after_commit(RequestState.APPROVED, self._apply_credential)

    async def _on_approved(self, request: CredentialResetRequest, event: StatusEvent) -> None:
        request.decided_by = event.actor.id
        request.decided_at = event.timestamp

    async def _apply_credential(
        self,
        request: CredentialResetRequest,
        event: Optional[StatusEvent] = None,
    ) -> CredentialResetRequest:
        try:
            await self._credentials.apply_credential(request.requester_id, request.candidate_ref)
        except Exception as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="identity",
                    error_message=str(e),
                )
            raise CredentialNotApplied(
                f"Reset {request.id} is approved but the credential was not applied: {e}",
                details={"request_id": str(request.id)},
            ) from e

        applied_at = self.lifecycle.now()

        def mark_applied(working: CredentialResetRequest) -> None:
            working.credential_applied_at = applied_at

        saved = await self.lifecycle.update_fields(
            request.id, mark_applied, LifecycleAction.APPROVE
        )
        if self._audit_logger:
            await self._audit_logger.log_credential_applied(saved, saved.requester_id)
        return saved

    async def _on_rejected(self, request: CredentialResetRequest, event: StatusEvent) -> None:
        request.rejection_reason = event.reason
        request.decided_by = event.actor.id
        request.decided_at = event.timestamp

    async def submit(
        self,
        actor: Actor,
        draft: Union[CredentialResetDraft, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> CredentialResetRequest:
        """
        Ask for a credential reset.

        Returns the existing Pending request if there is one.

        Raises:
            Forbidden: Actor is not a member
            ValidationError: Candidate was rejected before for this identity
        """
        if actor.role != ActorRole.MEMBER:
            raise Forbidden("Only members can request a credential reset")
        draft = parse_payload(CredentialResetDraft, draft)

        pending = await self._store.find_by_open_key(credential_reset_key(actor.id))
        if pending is not None:
            return pending

        rejected = await self._store.find(
            kind=RequestKind.CREDENTIAL_RESET,
            requester_id=actor.id,
            states=[RequestState.REJECTED],
            include_deleted=True,
        )
        if any(r.candidate_ref == draft.candidate_ref for r in rejected):
            raise ValidationError("This credential was rejected before; choose a new one")

        request = CredentialResetRequest(
            requester_id=actor.id,
            candidate_ref=draft.candidate_ref,
        )
        try:
            return await self.lifecycle.submit(actor, request, correlation_id)
        except DuplicateActiveRequest as e:
            return await self.lifecycle.get(e.existing_id)

    async def review(
        self,
        request_id: UUID,
        actor: Actor,
        decision: ReviewDecision,
        reason: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CredentialResetRequest:
        return await self.lifecycle.review(
            request_id, actor, decision, reason, correlation_id=correlation_id
        )

    async def approve(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> CredentialResetRequest:
        return await self.review(request_id, actor, ReviewDecision.APPROVE, None, correlation_id)

    async def retry_apply(
        self,
        request_id: UUID,
        actor: Actor,
    ) -> CredentialResetRequest:
        """
        Apply the credential of an Approved reset whose apply failed.

        Returns the request unchanged if the credential is already applied.

        Raises:
            InvalidStateTransition: The reset is not Approved
            CredentialNotApplied: The identity service failed again
        """
        if not actor.is_treasurer:
            raise Forbidden("Only the treasurer can apply an approved credential")
        request = await self.lifecycle.get(request_id)
        if request.state != RequestState.APPROVED:
            raise InvalidStateTransition(
                "Only approved resets can have their credential applied",
                current_state=request.state.value,
                action=LifecycleAction.APPROVE.value,
            )
        if request.credential_applied_at is not None:
            return request
        return await self._apply_credential(request)

    async def reject(
        self,
        request_id: UUID,
        actor: Actor,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> CredentialResetRequest:
        return await self.review(request_id, actor, ReviewDecision.REJECT, reason, correlation_id)

    async def delete(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> CredentialResetRequest:
        return await self.lifecycle.delete(request_id, actor, correlation_id)

    async def history(self, request_id: UUID, actor: Actor) -> list[StatusEvent]:
        return await self.lifecycle.history(request_id, actor)

    async def pending_requests(self, actor: Actor) -> list[CredentialResetRequest]:
        if not actor.is_treasurer:
            raise Forbidden("Only the treasurer can review credential resets")
        return await self._store.find(
            kind=RequestKind.CREDENTIAL_RESET,
            states=[RequestState.PENDING],
        )

    async def status(self, identity_id: str, actor: Actor) -> CredentialResetStatus:
        """Latest reset request for an identity."""
        if not (actor.is_treasurer or actor.id == identity_id):
            raise Forbidden("Members can only check their own reset status")

        requests = await self._store.find(
            kind=RequestKind.CREDENTIAL_RESET,
            requester_id=identity_id,
        )
        if not requests:
            return CredentialResetStatus(identity_id=identity_id, has_request=False)

        latest = requests[-1]
        return CredentialResetStatus(
            identity_id=identity_id,
            has_request=True,
            request_id=latest.id,
            state=latest.state,
            created_at=latest.created_at,
            decided_at=latest.decided_at,
            credential_applied=latest.credential_applied_at is not None,
            rejection_reason=latest.rejection_reason,
        )
