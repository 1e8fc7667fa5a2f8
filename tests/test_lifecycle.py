"""Tests for the generic RequestLifecycle engine and the workflow policies."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from treasury.audit import AuditLogger, AuditTrail
from treasury.errors import (
    Forbidden,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from treasury.models.audit import AuditEventType
from treasury.models.payloads import FileUpload, ReviewDecision
from treasury.models.request import ReimbursementRequest, RequestState
from treasury.services.attachments import AttachmentRejectedError, AttachmentStorageInterface
from treasury.services.storage import InMemoryRequestStore
from treasury.workflows import (
    CREDENTIAL_RESET_POLICY,
    PAYMENT_POLICY,
    REIMBURSEMENT_POLICY,
    LifecycleAction,
    RequestLifecycle,
)


class RacingStore(InMemoryRequestStore):
    """Lets another writer land first on the next replace()."""

    def __init__(self):
        super().__init__()
        self.race_next = False

    async def replace(self, request, expected_version):
        if self.race_next:
            self.race_next = False
            current = await self.get(request.id)
            current.description = "Edited by a concurrent writer"
            await super().replace(current, current.version)
        return await super().replace(request, expected_version)


def make_claim(requester_id: str) -> ReimbursementRequest:
    return ReimbursementRequest(
        requester_id=requester_id,
        amount=Decimal("500.00"),
        description="Snacks for the meetup",
        contact_number="9876543210",
        bill_proof_ref="https://files.example/bill.jpg",
    )


@pytest.fixture
def lifecycle(store, audit_storage, clock):
    return RequestLifecycle(
        REIMBURSEMENT_POLICY,
        store,
        audit_logger=AuditLogger(audit_storage),
        clock=clock,
    )


@pytest.fixture
async def claim(lifecycle, member):
    return await lifecycle.submit(member, make_claim(member.id))


class TestPolicies:
    """Tests for the per-kind graphs."""

    def test_terminal_states(self):
        """Test terminal states are those without outgoing edges."""
        assert PAYMENT_POLICY.terminal_states == {RequestState.PAID}
        assert REIMBURSEMENT_POLICY.terminal_states == {
            RequestState.REJECTED,
            RequestState.RECEIVED,
        }
        assert CREDENTIAL_RESET_POLICY.terminal_states == {
            RequestState.APPROVED,
            RequestState.REJECTED,
        }

    def test_only_payments_resubmit(self):
        """Test in-place resubmission is a payment-only feature."""
        assert PAYMENT_POLICY.allows_resubmission
        assert not REIMBURSEMENT_POLICY.allows_resubmission
        assert not CREDENTIAL_RESET_POLICY.allows_resubmission

    def test_every_rejection_needs_a_reason(self):
        """Test reject edges require a reason in every policy."""
        for policy in (PAYMENT_POLICY, REIMBURSEMENT_POLICY, CREDENTIAL_RESET_POLICY):
            for transition in policy.transitions_for(LifecycleAction.REJECT):
                assert transition.reason_required


class TestSubmit:
    """Tests for request creation."""

    async def test_submit_writes_first_event(self, claim, member):
        """Test a new request has one event, version 1."""
        assert claim.state == RequestState.PENDING
        assert claim.version == 1
        assert len(claim.history) == 1
        assert claim.history[0].source_state is None
        assert claim.history[0].actor == member

    async def test_submit_for_someone_else_forbidden(self, lifecycle, member, other_member):
        """Test members can only submit their own requests."""
        with pytest.raises(Forbidden):
            await lifecycle.submit(member, make_claim(other_member.id))

    async def test_treasurer_cannot_submit(self, lifecycle, treasurer):
        """Test submission is a member action."""
        with pytest.raises(Forbidden):
            await lifecycle.submit(treasurer, make_claim(treasurer.id))

    async def test_creation_logged(self, claim, audit_storage):
        """Test the activity log records the creation."""
        events = await audit_storage.get_events_by_entity("Reimbursement", claim.id)
        assert [e.event_type for e in events] == [AuditEventType.REQUEST_CREATED]


class TestTransitions:
    """Tests for RequestLifecycle.transition and friends."""

    async def test_review_approve(self, lifecycle, claim, treasurer):
        """Test approval appends one event and bumps the version."""
        approved = await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)

        assert approved.state == RequestState.APPROVED
        assert approved.version == 2
        assert len(approved.history) == 2
        assert approved.history[-1].source_state == RequestState.PENDING
        AuditTrail.verify(approved)

    async def test_reject_without_reason(self, lifecycle, claim, treasurer, store):
        """Test an empty reason fails and writes nothing."""
        for reason in (None, "", "   "):
            with pytest.raises(ValidationError):
                await lifecycle.review(claim.id, treasurer, ReviewDecision.REJECT, reason)

        stored = await store.get(claim.id)
        assert stored.state == RequestState.PENDING
        assert len(stored.history) == 1
        assert stored.version == 1

    async def test_reason_too_long(self, lifecycle, claim, treasurer):
        """Test reasons are capped at 500 characters."""
        with pytest.raises(ValidationError):
            await lifecycle.review(claim.id, treasurer, ReviewDecision.REJECT, "x" * 501)

    async def test_unknown_decision(self, lifecycle, claim, treasurer):
        """Test a made-up decision is a validation error."""
        with pytest.raises(ValidationError):
            await lifecycle.review(claim.id, treasurer, "maybe")

    async def test_wrong_role_is_forbidden(self, lifecycle, claim, member):
        """Test members cannot review."""
        with pytest.raises(Forbidden):
            await lifecycle.review(claim.id, member, ReviewDecision.APPROVE)

    async def test_forbidden_checked_before_state(self, lifecycle, claim, other_member, treasurer):
        """Test authorization fails before the state check does."""
        await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)
        # confirm_receipt is illegal from Approved, but the actor is wrong first
        with pytest.raises(Forbidden):
            await lifecycle.confirm_receipt(claim.id, other_member)

    async def test_illegal_source_state(self, lifecycle, claim, member, store):
        """Test skipping a state fails and leaves the request as it was."""
        with pytest.raises(InvalidStateTransition) as exc_info:
            await lifecycle.confirm_receipt(claim.id, member)

        assert exc_info.value.current_state == "Pending"
        assert exc_info.value.action == "confirm_receipt"
        stored = await store.get(claim.id)
        assert stored.version == 1
        assert len(stored.history) == 1

    async def test_action_not_in_policy(self, lifecycle, claim, member):
        """Test actions the kind does not have are invalid transitions."""
        with pytest.raises(InvalidStateTransition):
            await lifecycle.transition(claim.id, LifecycleAction.CONFIRM, member)

    async def test_resubmit_not_allowed_by_policy(self, lifecycle, claim, member, treasurer):
        """Test rejected claims cannot be resubmitted in place."""
        await lifecycle.review(claim.id, treasurer, ReviewDecision.REJECT, "No bill attached")
        with pytest.raises(InvalidStateTransition):
            await lifecycle.resubmit(claim.id, member, "https://files.example/new-bill.jpg")

    async def test_refusals_are_logged(self, lifecycle, claim, member, audit_storage):
        """Test refused actions reach the activity log."""
        with pytest.raises(InvalidStateTransition):
            await lifecycle.confirm_receipt(claim.id, member)

        events = await audit_storage.get_events_by_entity("Reimbursement", claim.id)
        refused = [e for e in events if e.event_type == AuditEventType.TRANSITION_REFUSED]
        assert len(refused) == 1
        assert refused[0].error_code == "invalid_state_transition"

    async def test_missing_request(self, lifecycle, treasurer):
        """Test unknown ids raise NotFound."""
        from uuid import uuid4
        with pytest.raises(NotFound):
            await lifecycle.review(uuid4(), treasurer, ReviewDecision.APPROVE)

    async def test_on_enter_hook_runs_before_write(self, lifecycle, claim, treasurer):
        """Test hooks see the new event and can change the working copy."""
        seen = []

        async def hook(request, event):
            seen.append(event.target_state)
            request.rejection_reason = "set by hook"

        lifecycle.on_enter(RequestState.APPROVED, hook)
        approved = await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)

        assert seen == [RequestState.APPROVED]
        assert approved.rejection_reason == "set by hook"

    async def test_failing_hook_aborts(self, lifecycle, claim, treasurer, store):
        """Test an exception in a hook leaves nothing written."""
        async def hook(request, event):
            raise RuntimeError("identity service down")

        lifecycle.on_enter(RequestState.APPROVED, hook)
        with pytest.raises(RuntimeError):
            await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)

        stored = await store.get(claim.id)
        assert stored.state == RequestState.PENDING


class TestConcurrency:
    """Tests for serialized and conflicting writers."""

    async def test_concurrent_reviews_one_wins(self, lifecycle, claim, treasurer, store):
        """Test two simultaneous reviews produce exactly one transition."""
        results = await asyncio.gather(
            lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE),
            lifecycle.review(claim.id, treasurer, ReviewDecision.REJECT, "Duplicate claim"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateTransition)

        stored = await store.get(claim.id)
        assert len(stored.history) == 2
        sources = [e.source_state for e in stored.history]
        assert len(sources) == len(set(sources))

    async def test_version_conflict_becomes_invalid_transition(self, member, treasurer, clock):
        """Test a stale write is refused, never silently applied."""
        store = RacingStore()
        lifecycle = RequestLifecycle(REIMBURSEMENT_POLICY, store, clock=clock)
        claim = await lifecycle.submit(member, make_claim(member.id))

        store.race_next = True
        with pytest.raises(InvalidStateTransition):
            await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)

        stored = await store.get(claim.id)
        assert stored.state == RequestState.PENDING
        assert stored.description == "Edited by a concurrent writer"

    async def test_after_commit_skipped_for_losing_write(self, member, treasurer, clock):
        """Test after-commit hooks only run once the write is stored."""
        store = RacingStore()
        lifecycle = RequestLifecycle(REIMBURSEMENT_POLICY, store, clock=clock)
        hook = AsyncMock(return_value=None)
        lifecycle.after_commit(RequestState.APPROVED, hook)
        claim = await lifecycle.submit(member, make_claim(member.id))

        store.race_next = True
        with pytest.raises(InvalidStateTransition):
            await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)
        hook.assert_not_awaited()

        approved = await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)
        hook.assert_awaited_once()
        assert hook.await_args.args[0] == approved

    async def test_after_commit_result_returned(self, lifecycle, claim, treasurer):
        """Test a hook's follow-up write is what the caller gets back."""
        async def stamp(request, event):
            def apply(working):
                working.description = "Snacks for the meetup, receipt checked"
            return await lifecycle.update_fields(request.id, apply, LifecycleAction.APPROVE)

        lifecycle.after_commit(RequestState.APPROVED, stamp)
        approved = await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)

        assert approved.description == "Snacks for the meetup, receipt checked"
        assert approved.version == claim.version + 2
        assert len(approved.history) == 2

    async def test_locks_are_dropped(self, lifecycle, claim, member, treasurer):
        """Test per-request locks do not outlive the calls using them."""
        await asyncio.gather(
            lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE),
            lifecycle.fulfill(claim.id, treasurer, "https://files.example/proof.png", "Sent by UPI"),
        )

        assert len(lifecycle._locks) == 0


class TestDelete:
    """Tests for soft delete and archive."""

    async def test_delete_pending(self, lifecycle, claim, member, store, audit_storage):
        """Test deleting hides the request but keeps it stored."""
        deleted = await lifecycle.delete(claim.id, member)

        assert deleted.is_deleted
        assert len(deleted.history) == 1
        with pytest.raises(NotFound):
            await lifecycle.get(claim.id)
        assert (await store.get(claim.id)).history == deleted.history

        events = await audit_storage.get_events_by_entity("Reimbursement", claim.id)
        assert events[-1].event_type == AuditEventType.REQUEST_DELETED

    async def test_delete_mid_flow_refused(self, lifecycle, claim, member, treasurer):
        """Test an Approved claim cannot be deleted."""
        await lifecycle.review(claim.id, treasurer, ReviewDecision.APPROVE)
        with pytest.raises(InvalidStateTransition):
            await lifecycle.delete(claim.id, member)

    async def test_delete_by_other_member(self, lifecycle, claim, other_member):
        """Test only the requester can delete."""
        with pytest.raises(Forbidden):
            await lifecycle.delete(claim.id, other_member)


class TestReads:
    """Tests for get/history access control."""

    async def test_history_for_owner_and_treasurer(self, lifecycle, claim, member, treasurer):
        """Test the owner and the treasurer can read the history."""
        assert len(await lifecycle.history(claim.id, member)) == 1
        assert len(await lifecycle.history(claim.id, treasurer)) == 1

    async def test_history_for_stranger(self, lifecycle, claim, other_member):
        """Test other members cannot."""
        with pytest.raises(Forbidden):
            await lifecycle.history(claim.id, other_member)

    async def test_other_kind_not_found(self, store, clock, member, claim):
        """Test a lifecycle only sees its own kind."""
        payments = RequestLifecycle(PAYMENT_POLICY, store, clock=clock)
        with pytest.raises(NotFound):
            await payments.get(claim.id)


class TestAttachments:
    """Tests for RequestLifecycle.store_attachment."""

    async def test_url_passthrough(self, lifecycle):
        """Test a URL is stored as given (trimmed)."""
        assert await lifecycle.store_attachment(" https://files.example/a.png ", "x") == (
            "https://files.example/a.png"
        )

    async def test_blank_url(self, lifecycle):
        """Test a blank URL is a validation error."""
        with pytest.raises(ValidationError):
            await lifecycle.store_attachment("  ", "x")

    async def test_upload_without_object_store(self, lifecycle):
        """Test files need an object store."""
        upload = FileUpload(content=b"data", filename="a.png", mime_type="image/png")
        with pytest.raises(ValidationError):
            await lifecycle.store_attachment(upload, "x")

    async def test_rejected_file(self, store, clock):
        """Test a rejected file surfaces as ValidationError."""
        attachments = MagicMock(spec=AttachmentStorageInterface)
        attachments.upload = AsyncMock(side_effect=AttachmentRejectedError("not an image"))
        lifecycle = RequestLifecycle(REIMBURSEMENT_POLICY, store, attachments=attachments, clock=clock)
        upload = FileUpload(content=b"data", filename="a.png", mime_type="image/png")

        with pytest.raises(ValidationError, match="not an image"):
            await lifecycle.store_attachment(upload, "x")
