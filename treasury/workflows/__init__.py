"""Request workflows package."""

from treasury.workflows.credential_reset import CredentialResetStatus, CredentialResetWorkflow
from treasury.workflows.lifecycle import RequestLifecycle
from treasury.workflows.payment import PaymentQR, PaymentSummary, PaymentWorkflow
from treasury.workflows.policies import (
    CREDENTIAL_RESET_POLICY,
    PAYMENT_POLICY,
    REIMBURSEMENT_POLICY,
    LifecycleAction,
    Transition,
    WorkflowPolicy,
    policy_for,
)
from treasury.workflows.reimbursement import ReimbursementStatistics, ReimbursementWorkflow

__all__ = [
    "CREDENTIAL_RESET_POLICY",
    "CredentialResetStatus",
    "CredentialResetWorkflow",
    "LifecycleAction",
    "PAYMENT_POLICY",
    "PaymentQR",
    "PaymentSummary",
    "PaymentWorkflow",
    "REIMBURSEMENT_POLICY",
    "ReimbursementStatistics",
    "ReimbursementWorkflow",
    "RequestLifecycle",
    "Transition",
    "WorkflowPolicy",
    "policy_for",
]
