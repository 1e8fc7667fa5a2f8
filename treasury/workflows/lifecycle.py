"""
Request Lifecycle Engine

Every state change follows the same steps, for every request kind:

1. Load the request (NotFound if missing, deleted, or of another kind)
2. Authorize the actor for the action (Forbidden)
3. Validate the action's own input, e.g. the rejection reason (ValidationError)
4. Check the edge exists from the current state (InvalidStateTransition)
5. Run the caller's guard (extra checks such as payment verification)
6. Upload the attachment, if any, and keep only its URL
7. Apply field changes, append one StatusEvent, run on_enter hooks
8. Write with compare-and-set on the version field
9. Run after_commit hooks (side effects outside the request document)

CRITICAL: Steps 1-5 never modify anything. Step 8 writes the new state
and its StatusEvent in one document, so they land together or not at
all. A concurrent writer that got there first makes step 8 fail, and the
loser sees InvalidStateTransition, never a silent overwrite.

Side effects that must not happen for a loser (applying a credential)
belong in after_commit hooks, which only run for the winning write.
"""

import asyncio
import weakref
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

from treasury.audit import AuditLogger, AuditTrail
from treasury.errors import (
    DuplicateActiveRequest,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    TreasuryError,
    ValidationError,
)
from treasury.models.payloads import AttachmentInput, FileUpload, ReviewDecision
from treasury.models.request import (
    Actor,
    ActorRole,
    AnyRequest,
    RequestState,
    StatusEvent,
    utc_now,
)
from treasury.services.attachments import (
    AttachmentRejectedError,
    AttachmentStorageInterface,
    AttachmentUploadError,
)
from treasury.services.storage import (
    DuplicateOpenRequestError,
    NotFoundError,
    RequestStoreInterface,
    VersionConflictError,
)
from treasury.workflows.policies import LifecycleAction, Transition, WorkflowPolicy

Guard = Callable[[AnyRequest], Awaitable[None]]
Apply = Callable[[AnyRequest, Optional[str]], None]
EnterHook = Callable[[AnyRequest, StatusEvent], Awaitable[None]]
CommitHook = Callable[[AnyRequest, StatusEvent], Awaitable[Optional[AnyRequest]]]

REASON_MAX_LENGTH = 500


class RequestLifecycle:
    """
    Generic state machine over one request kind.

    Specializations (PaymentWorkflow, ReimbursementWorkflow,
    CredentialResetWorkflow) own a RequestLifecycle and add their
    kind-specific payloads, guards and hooks.
    """

    def __init__(
        self,
        policy: WorkflowPolicy,
        store: RequestStoreInterface,
        trail: Optional[AuditTrail] = None,
        attachments: Optional[AttachmentStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.policy = policy
        self._store = store
        self._trail = trail or AuditTrail()
        self._attachments = attachments
        self._audit_logger = audit_logger
        self._clock = clock
        # Entries vanish once no caller holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._on_enter: dict[RequestState, list[EnterHook]] = {}
        self._after_commit: dict[RequestState, list[CommitHook]] = {}

    @property
    def store(self) -> RequestStoreInterface:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    def on_enter(self, state: RequestState, hook: EnterHook) -> None:
        """
        Register a hook run when a request enters a state.

        Hooks run on the working copy after the StatusEvent is appended
        and before the write. Raising aborts the transition.
        """
        self._on_enter.setdefault(state, []).append(hook)

    def after_commit(self, state: RequestState, hook: CommitHook) -> None:
        """
        Register a hook run once a transition into state is stored.

        Hooks run after the lock is released, only for the write that won
        the compare-and-set. A hook may return an updated request to hand
        back to the caller. Raising does not undo the stored transition.
        """
        self._after_commit.setdefault(state, []).append(hook)

    def _lock(self, request_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        return lock

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, request_id: UUID) -> AnyRequest:
        """
        Load a live request of this kind.

        Raises:
            NotFound: Missing, soft-deleted, or another kind
        """
        request = await self._store.get(request_id)
        if request is None or request.is_deleted or request.kind != self.policy.kind:
            raise NotFound(f"{self.policy.kind.value} request not found: {request_id}")
        return request

    async def get_for(self, request_id: UUID, actor: Actor) -> AnyRequest:
        """Load a request the actor may read (its owner or a treasurer)."""
        request = await self.get(request_id)
        if not (actor.is_treasurer or request.owned_by(actor)):
            raise Forbidden("Only the requester or a treasurer can view this request")
        return request

    async def history(self, request_id: UUID, actor: Actor) -> list[StatusEvent]:
        """Ordered status history, oldest first."""
        request = await self.get_for(request_id, actor)
        return list(request.history)

    # =========================================================================
    # CREATION
    # =========================================================================

    async def submit(
        self,
        actor: Actor,
        request: AnyRequest,
        correlation_id: Optional[UUID] = None,
    ) -> AnyRequest:
        """
        Persist a new request in the policy's initial state.

        Raises:
            Forbidden: Actor is not the member the request is for
            DuplicateActiveRequest: Another open request holds the same key
        """
        if actor.role != ActorRole.MEMBER or actor.id != request.requester_id:
            raise Forbidden("Requests can only be submitted by the member themselves")
        if request.kind != self.policy.kind:
            raise ValidationError(
                f"Expected a {self.policy.kind.value} request, got {request.kind.value}"
            )

        working = request.model_copy(deep=True)
        working.history = []
        working.created_at = self.now()
        self._trail.record(working, self.policy.initial_state, actor, at=working.created_at)
        working.open_key = self.policy.open_key_for(working)

        try:
            saved = await self._store.insert(working)
        except DuplicateOpenRequestError as e:
            raise DuplicateActiveRequest(
                f"An open {self.policy.kind.value} request already exists",
                existing_id=e.existing_id,
            ) from e

        if self._audit_logger:
            await self._audit_logger.log_request_created(saved, correlation_id)
        return saved

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _authorize(self, request: AnyRequest, action: LifecycleAction, actor: Actor) -> None:
        candidates = self.policy.transitions_for(action)
        if not candidates:
            raise InvalidStateTransition(
                f"{self.policy.kind.value} requests do not support {action.value}",
                current_state=request.state.value,
                action=action.value,
            )

        rule = candidates[0]
        if actor.role != rule.role:
            raise Forbidden(f"{action.value} requires the {rule.role.value} role")
        if rule.owner_only and not request.owned_by(actor):
            raise Forbidden(f"Only the requester can {action.value} this request")

    def _check_reason(self, action: LifecycleAction, reason: Optional[str]) -> Optional[str]:
        candidates = self.policy.transitions_for(action)
        reason = reason.strip() if reason else None
        if candidates and candidates[0].reason_required and not reason:
            raise ValidationError(f"A reason is required to {action.value}")
        if reason and len(reason) > REASON_MAX_LENGTH:
            raise ValidationError(f"Reason must be at most {REASON_MAX_LENGTH} characters")
        return reason

    def _edge(self, request: AnyRequest, action: LifecycleAction) -> Transition:
        transition = self.policy.find(action, request.state)
        if transition is None:
            raise InvalidStateTransition(
                f"Cannot {action.value} a {self.policy.kind.value} request "
                f"in state {request.state.value}",
                current_state=request.state.value,
                action=action.value,
            )
        return transition

    async def _commit(
        self,
        request: AnyRequest,
        expected_version: int,
        action: LifecycleAction,
    ) -> AnyRequest:
        try:
            return await self._store.replace(request, expected_version)
        except VersionConflictError as e:
            raise InvalidStateTransition(
                f"Request {request.id} was changed by someone else; reload and retry",
                current_state=None,
                action=action.value,
            ) from e
        except DuplicateOpenRequestError as e:
            raise DuplicateActiveRequest(
                f"An open {self.policy.kind.value} request already exists",
                existing_id=e.existing_id,
            ) from e
        except NotFoundError as e:
            raise NotFound(str(e)) from e

    async def transition(
        self,
        request_id: UUID,
        action: LifecycleAction,
        actor: Actor,
        *,
        reason: Optional[str] = None,
        attachment: Optional[AttachmentInput] = None,
        attachment_folder: str = "attachments",
        guard: Optional[Guard] = None,
        apply: Optional[Apply] = None,
        idempotent_in: Optional[RequestState] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AnyRequest:
        """
        Move a request along one edge of the policy graph.

        Args:
            request_id: Request to change
            action: Which edge to take
            actor: Who is acting
            reason: Stored on the StatusEvent (mandatory for rejections)
            attachment: URL or file stored on the StatusEvent
            attachment_folder: Object-store folder for file uploads
            guard: Extra async check, run after the state check
            apply: Sets kind-specific fields on the working copy
            idempotent_in: If the request is already in this state,
                return it unchanged instead of failing
            correlation_id: Ties together the activity log entries

        Returns:
            The stored request, with its new StatusEvent and version
        """
        async with self._lock(request_id):
            request = await self.get(request_id)
            try:
                self._authorize(request, action, actor)
                if idempotent_in is not None and request.state == idempotent_in:
                    return request

                reason = self._check_reason(action, reason)
                step = self._edge(request, action)
                if guard:
                    await guard(request)

                attachment_ref = None
                if attachment is not None:
                    attachment_ref = await self.store_attachment(
                        attachment, attachment_folder, correlation_id
                    )

                working = request.model_copy(deep=True)
                if apply:
                    apply(working, attachment_ref)
                event = self._trail.record(
                    working,
                    step.target,
                    actor,
                    reason=reason,
                    attachment_ref=attachment_ref,
                    at=self.now(),
                )
                for hook in self._on_enter.get(step.target, []):
                    await hook(working, event)
                working.open_key = self.policy.open_key_for(working)

                saved = await self._commit(working, request.version, action)
            except TreasuryError as e:
                if self._audit_logger:
                    await self._audit_logger.log_transition_refused(
                        request,
                        action=action.value,
                        actor_id=actor.id,
                        error_code=e.code,
                        error_message=e.message,
                        correlation_id=correlation_id,
                    )
                raise

        if self._audit_logger:
            await self._audit_logger.log_transition(saved, event, correlation_id)
        for hook in self._after_commit.get(step.target, []):
            updated = await hook(saved, event)
            if updated is not None:
                saved = updated
        return saved

    async def update_fields(
        self,
        request_id: UUID,
        apply: Callable[[AnyRequest], None],
        action: LifecycleAction,
    ) -> AnyRequest:
        """
        Write field changes that are not a state change (no StatusEvent).

        Raises:
            InvalidStateTransition: Changed by someone else meanwhile
        """
        async with self._lock(request_id):
            request = await self.get(request_id)
            working = request.model_copy(deep=True)
            apply(working)
            working.updated_at = self.now()
            return await self._commit(working, request.version, action)

    async def review(
        self,
        request_id: UUID,
        actor: Actor,
        decision: ReviewDecision,
        reason: Optional[str] = None,
        guard: Optional[Guard] = None,
        apply: Optional[Apply] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AnyRequest:
        """Approve or reject. A rejection without a reason fails ValidationError."""
        try:
            decision = ReviewDecision(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown review decision: {decision!r}") from e
        action = (
            LifecycleAction.APPROVE if decision == ReviewDecision.APPROVE
            else LifecycleAction.REJECT
        )
        return await self.transition(
            request_id,
            action,
            actor,
            reason=reason,
            guard=guard,
            apply=apply,
            correlation_id=correlation_id,
        )

    async def resubmit(
        self,
        request_id: UUID,
        actor: Actor,
        attachment: AttachmentInput,
        note: Optional[str] = None,
        attachment_folder: str = "resubmissions",
        guard: Optional[Guard] = None,
        apply: Optional[Apply] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AnyRequest:
        """Retry a rejected request in place, if the policy allows it."""
        if not self.policy.allows_resubmission:
            request = await self.get(request_id)
            raise InvalidStateTransition(
                f"{self.policy.kind.value} requests cannot be resubmitted; submit a new one",
                current_state=request.state.value,
                action=LifecycleAction.RESUBMIT.value,
            )
        return await self.transition(
            request_id,
            LifecycleAction.RESUBMIT,
            actor,
            reason=note,
            attachment=attachment,
            attachment_folder=attachment_folder,
            guard=guard,
            apply=apply,
            correlation_id=correlation_id,
        )

    async def fulfill(
        self,
        request_id: UUID,
        actor: Actor,
        attachment: Optional[AttachmentInput] = None,
        reason: Optional[str] = None,
        attachment_folder: str = "payouts",
        apply: Optional[Apply] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AnyRequest:
        return await self.transition(
            request_id,
            LifecycleAction.FULFILL,
            actor,
            reason=reason,
            attachment=attachment,
            attachment_folder=attachment_folder,
            apply=apply,
            correlation_id=correlation_id,
        )

    async def confirm_receipt(
        self,
        request_id: UUID,
        actor: Actor,
        apply: Optional[Apply] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AnyRequest:
        return await self.transition(
            request_id,
            LifecycleAction.CONFIRM_RECEIPT,
            actor,
            apply=apply,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # DELETION
    # =========================================================================

    async def delete(
        self,
        request_id: UUID,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> AnyRequest:
        """
        Soft-delete or archive a request.

        From a deletable state the request is marked deleted and its open
        key released. From a completed state it is only archived (hidden
        from the requester's lists). History is kept either way, and no
        StatusEvent is appended because the state does not change.
        """
        async with self._lock(request_id):
            request = await self.get(request_id)
            try:
                if not request.owned_by(actor):
                    raise Forbidden("Only the requester can delete this request")

                working = request.model_copy(deep=True)
                if request.state in self.policy.deletable_states:
                    archived = False
                    working.deleted_at = self.now()
                    working.updated_at = working.deleted_at
                    working.open_key = None
                elif request.state in self.policy.archivable_states:
                    if request.is_archived:
                        return request
                    archived = True
                    working.archived_at = self.now()
                    working.updated_at = working.archived_at
                else:
                    raise InvalidStateTransition(
                        f"Cannot delete a {self.policy.kind.value} request "
                        f"in state {request.state.value}",
                        current_state=request.state.value,
                        action=LifecycleAction.DELETE.value,
                    )

                saved = await self._commit(working, request.version, LifecycleAction.DELETE)
            except TreasuryError as e:
                if self._audit_logger:
                    await self._audit_logger.log_transition_refused(
                        request,
                        action=LifecycleAction.DELETE.value,
                        actor_id=actor.id,
                        error_code=e.code,
                        error_message=e.message,
                        correlation_id=correlation_id,
                    )
                raise

        if self._audit_logger:
            await self._audit_logger.log_request_deleted(
                saved, actor.id, archived, correlation_id
            )
        return saved

    # =========================================================================
    # ATTACHMENTS
    # =========================================================================

    async def store_attachment(
        self,
        attachment: AttachmentInput,
        folder: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Resolve an attachment to the URL string kept on the request.

        A string is taken as an already-uploaded URL. A FileUpload goes
        to object storage first.

        Raises:
            ValidationError: Blank URL, rejected file, or no object store
        """
        if isinstance(attachment, str):
            url = attachment.strip()
            if not url:
                raise ValidationError("Attachment is required")
            return url

        if not isinstance(attachment, FileUpload):
            raise ValidationError("Attachment must be a URL or a file upload")
        if self._attachments is None:
            raise ValidationError("File uploads are not available; provide an attachment URL")

        try:
            url = await self._attachments.upload(attachment, folder)
        except AttachmentRejectedError as e:
            raise ValidationError(str(e), details={"filename": attachment.filename}) from e
        except AttachmentUploadError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="cloudinary",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_attachment_stored(
                url, attachment.filename, len(attachment.content), correlation_id
            )
        return url
