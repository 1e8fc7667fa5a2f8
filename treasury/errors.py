"""
Error Taxonomy for Aurora Treasury

Every failure a caller can observe is one of these typed errors.
Nothing is swallowed and nothing is retried automatically, except the
bounded reference-code bump inside the reference generator.

Idempotent operations (duplicate QR generation, duplicate payment
confirmation, duplicate credential reset submission) do NOT raise:
they return the existing request.
"""

from typing import Any, Optional, TypeVar
from uuid import UUID

import pydantic
from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)


class TreasuryError(Exception):
    """Base exception for all workflow failures."""

    code = "treasury_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TreasuryError):
    """Malformed or missing field (blank rejection reason, non-positive amount...)."""

    code = "validation_error"


class InvalidStateTransition(TreasuryError):
    """The requested action is not legal from the request's current state."""

    code = "invalid_state_transition"

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        action: Optional[str] = None,
    ):
        super().__init__(
            message,
            details={"current_state": current_state, "action": action},
        )
        self.current_state = current_state
        self.action = action


class Forbidden(TreasuryError):
    """Actor or role does not match what the action requires."""

    code = "forbidden"


class NotFound(TreasuryError):
    """Request does not exist (or was deleted)."""

    code = "not_found"


class DuplicateActiveRequest(TreasuryError):
    """A second open request for a constrained key."""

    code = "duplicate_active_request"

    def __init__(self, message: str, existing_id: Optional[UUID] = None):
        super().__init__(
            message,
            details={"existing_id": str(existing_id) if existing_id else None},
        )
        self.existing_id = existing_id


class MalformedReference(TreasuryError):
    """A string does not follow the reference-code grammar."""

    code = "malformed_reference"


class ReferenceExhausted(TreasuryError):
    """Could not find a free reference code within the allowed bumps."""

    code = "reference_exhausted"


class CredentialNotApplied(TreasuryError):
    """
    A reset is Approved but the identity service refused the credential.

    The approval stands; the treasurer retries with retry_apply().
    """

    code = "credential_not_applied"


def parse_payload(model: type[ModelT], payload: Any) -> ModelT:
    """
    Coerce a payload into a pydantic model.

    Accepts an instance of the model or a mapping. Pydantic validation
    failures are converted to ValidationError so callers only ever see
    the treasury taxonomy.
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        issues = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        fields = ", ".join(issue["field"] for issue in issues) or "payload"
        raise ValidationError(
            f"Invalid {model.__name__}: {fields}",
            details={"issues": issues},
        ) from e
