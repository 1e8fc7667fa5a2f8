"""
Workflow Policies

DESIGN DECISION: The three request kinds share one state machine engine.
What differs between them is data, not code:

- which edges exist (action, source -> target) and who may take them
- which states are open (count toward a uniqueness key)
- which states allow deletion, and which only allow archiving
- whether a rejection can be retried in place

A WorkflowPolicy captures that data. RequestLifecycle interprets it.
"""

from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from treasury.models.request import (
    ActorRole,
    AnyRequest,
    FundPaymentRequest,
    RequestKind,
    RequestState,
)


class LifecycleAction(str, Enum):
    """Actions a caller can take on an existing request."""
    SUBMIT = "submit"
    CONFIRM = "confirm"
    APPROVE = "approve"
    REJECT = "reject"
    RESUBMIT = "resubmit"
    FULFILL = "fulfill"
    CONFIRM_RECEIPT = "confirm_receipt"
    EXPIRE = "expire"
    DELETE = "delete"


class Transition(BaseModel):
    """One edge of a workflow graph."""
    model_config = ConfigDict(frozen=True)

    action: LifecycleAction
    source: RequestState
    target: RequestState
    role: ActorRole
    owner_only: bool = False
    reason_required: bool = False


class WorkflowPolicy(BaseModel):
    """Per-kind parameters of the generic lifecycle."""
    model_config = ConfigDict(frozen=True)

    kind: RequestKind
    initial_state: RequestState = RequestState.PENDING
    transitions: tuple[Transition, ...]

    # States in which open_key is set (and therefore unique)
    open_states: frozenset[RequestState] = frozenset()
    open_key: Optional[Callable[[AnyRequest], str]] = None

    # Soft delete releases the request; archive only hides it
    deletable_states: frozenset[RequestState] = frozenset()
    archivable_states: frozenset[RequestState] = frozenset()

    allows_resubmission: bool = False

    def transitions_for(self, action: LifecycleAction) -> list[Transition]:
        return [t for t in self.transitions if t.action == action]

    def find(self, action: LifecycleAction, source: RequestState) -> Optional[Transition]:
        for transition in self.transitions:
            if transition.action == action and transition.source == source:
                return transition
        return None

    @property
    def states(self) -> frozenset[RequestState]:
        states = {self.initial_state}
        for transition in self.transitions:
            states.add(transition.source)
            states.add(transition.target)
        return frozenset(states)

    @property
    def terminal_states(self) -> frozenset[RequestState]:
        """States with no outgoing edge."""
        sources = {t.source for t in self.transitions}
        return frozenset(s for s in self.states if s not in sources)

    def open_key_for(self, request: AnyRequest) -> Optional[str]:
        """The uniqueness key for a request in its current state, if any."""
        if self.open_key is None or request.state not in self.open_states:
            return None
        return self.open_key(request)


def fund_key(requester_id: str, period_key: str) -> str:
    return f"fund:{requester_id}:{period_key}"


def fund_open_key(request: FundPaymentRequest) -> str:
    return fund_key(request.requester_id, request.period.key)


def credential_reset_key(identity_id: str) -> str:
    return f"credential-reset:{identity_id}"


def credential_open_key(request: AnyRequest) -> str:
    return credential_reset_key(request.requester_id)


PENDING = RequestState.PENDING
AWAITING = RequestState.AWAITING_VERIFICATION
PAID = RequestState.PAID
FAILED = RequestState.FAILED
APPROVED = RequestState.APPROVED
REJECTED = RequestState.REJECTED
RECEIVED = RequestState.RECEIVED

MEMBER = ActorRole.MEMBER
TREASURER = ActorRole.TREASURER
SYSTEM = ActorRole.SYSTEM


PAYMENT_POLICY = WorkflowPolicy(
    kind=RequestKind.FUND_PAYMENT,
    transitions=(
        Transition(action=LifecycleAction.CONFIRM, source=PENDING, target=AWAITING,
                   role=MEMBER, owner_only=True),
        Transition(action=LifecycleAction.APPROVE, source=AWAITING, target=PAID,
                   role=TREASURER),
        Transition(action=LifecycleAction.REJECT, source=AWAITING, target=FAILED,
                   role=TREASURER, reason_required=True),
        Transition(action=LifecycleAction.RESUBMIT, source=FAILED, target=AWAITING,
                   role=MEMBER, owner_only=True),
        # Only reachable through an external scheduler
        Transition(action=LifecycleAction.EXPIRE, source=PENDING, target=FAILED,
                   role=SYSTEM, reason_required=True),
    ),
    open_states=frozenset({PENDING, AWAITING}),
    open_key=fund_open_key,
    deletable_states=frozenset({PENDING, FAILED}),
    archivable_states=frozenset({PAID}),
    allows_resubmission=True,
)


REIMBURSEMENT_POLICY = WorkflowPolicy(
    kind=RequestKind.REIMBURSEMENT,
    transitions=(
        Transition(action=LifecycleAction.APPROVE, source=PENDING, target=APPROVED,
                   role=TREASURER),
        Transition(action=LifecycleAction.REJECT, source=PENDING, target=REJECTED,
                   role=TREASURER, reason_required=True),
        Transition(action=LifecycleAction.FULFILL, source=APPROVED, target=PAID,
                   role=TREASURER),
        Transition(action=LifecycleAction.CONFIRM_RECEIPT, source=PAID, target=RECEIVED,
                   role=MEMBER, owner_only=True),
    ),
    deletable_states=frozenset({PENDING, REJECTED}),
    archivable_states=frozenset({RECEIVED}),
    # A claim is tied to one bill; a new bill means a new claim
    allows_resubmission=False,
)


CREDENTIAL_RESET_POLICY = WorkflowPolicy(
    kind=RequestKind.CREDENTIAL_RESET,
    transitions=(
        Transition(action=LifecycleAction.APPROVE, source=PENDING, target=APPROVED,
                   role=TREASURER),
        Transition(action=LifecycleAction.REJECT, source=PENDING, target=REJECTED,
                   role=TREASURER, reason_required=True),
    ),
    open_states=frozenset({PENDING}),
    open_key=credential_open_key,
    deletable_states=frozenset({PENDING, REJECTED}),
    archivable_states=frozenset({APPROVED}),
    allows_resubmission=False,
)


POLICIES: dict[RequestKind, WorkflowPolicy] = {
    policy.kind: policy
    for policy in (PAYMENT_POLICY, REIMBURSEMENT_POLICY, CREDENTIAL_RESET_POLICY)
}


def policy_for(kind: RequestKind) -> WorkflowPolicy:
    return POLICIES[kind]
