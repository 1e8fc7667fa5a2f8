"""
Audit Models for Aurora Treasury

Two records exist for every state change:
1. The StatusEvent on the request itself (authoritative history)
2. An AuditEvent in the activity log (structured log + spreadsheet mirror)

The activity log also records things that are not transitions:
refused actions, reference collisions, deletions, uploads.

Activity-log rows are only ever appended.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from treasury.models.request import Request, StatusEvent, utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Request lifecycle
    REQUEST_CREATED = "request_created"
    REQUEST_TRANSITIONED = "request_transitioned"
    TRANSITION_REFUSED = "transition_refused"
    REQUEST_DELETED = "request_deleted"
    REQUEST_ARCHIVED = "request_archived"

    # Reconciliation references
    REFERENCE_GENERATED = "reference_generated"
    REFERENCE_COLLISION = "reference_collision"
    REFERENCE_RELEASED = "reference_released"

    # Side effects
    ATTACHMENT_STORED = "attachment_stored"
    CREDENTIAL_APPLIED = "credential_applied"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Maps to the local log level."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of the activity log.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Request kind (e.g., 'FundPayment') or 'reference'"
    )
    entity_id: Optional[UUID] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one client action"
    )

    actor_id: Optional[str] = None
    actor_role: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Flat, JSON-safe form passed to structlog.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        One activity-log spreadsheet row.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, actor_id, actor_role, description, details_json,
         error_code, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.actor_id or "",
            self.actor_role or "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transition(request, status_event)
        event = AuditEventBuilder.reference_collision(code, attempt)
    """

    @staticmethod
    def request_created(
        request: Request,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        first = request.history[0] if request.history else None
        return AuditEvent(
            event_type=AuditEventType.REQUEST_CREATED,
            entity_type=request.kind.value,
            entity_id=request.id,
            correlation_id=correlation_id,
            actor_id=first.actor.id if first else request.requester_id,
            actor_role=first.actor.role.value if first else None,
            description=f"{request.kind.value} request created in {request.state.value}",
            details={
                "requester_id": request.requester_id,
                "amount": str(request.amount) if request.amount is not None else None,
            },
        )

    @staticmethod
    def transition(
        request: Request,
        event: StatusEvent,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        source = event.source_state.value if event.source_state else None
        return AuditEvent(
            event_type=AuditEventType.REQUEST_TRANSITIONED,
            entity_type=request.kind.value,
            entity_id=request.id,
            correlation_id=correlation_id,
            actor_id=event.actor.id,
            actor_role=event.actor.role.value,
            description=f"{request.kind.value}: {source} -> {event.target_state.value}",
            details={
                "source_state": source,
                "target_state": event.target_state.value,
                "reason": event.reason,
                "attachment_ref": event.attachment_ref,
                "version": request.version,
            },
        )

    @staticmethod
    def transition_refused(
        request: Request,
        action: str,
        actor_id: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSITION_REFUSED,
            severity=AuditSeverity.WARNING,
            entity_type=request.kind.value,
            entity_id=request.id,
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=f"Refused {action} on {request.kind.value} in {request.state.value}",
            details={"action": action, "current_state": request.state.value},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def request_deleted(
        request: Request,
        actor_id: str,
        archived: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.REQUEST_ARCHIVED if archived
                else AuditEventType.REQUEST_DELETED
            ),
            entity_type=request.kind.value,
            entity_id=request.id,
            correlation_id=correlation_id,
            actor_id=actor_id,
            description=(
                f"{request.kind.value} request "
                f"{'archived' if archived else 'deleted'} in {request.state.value}"
            ),
            details={"state": request.state.value, "history_length": len(request.history)},
        )

    @staticmethod
    def reference_generated(
        code: str,
        request_id: UUID,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFERENCE_GENERATED,
            entity_type="reference",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"Reference generated: {code}",
            details={"reference": code, "attempts": attempts},
        )

    @staticmethod
    def reference_collision(
        code: str,
        attempt: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFERENCE_COLLISION,
            severity=AuditSeverity.WARNING,
            entity_type="reference",
            correlation_id=correlation_id,
            description=f"Reference collision on attempt {attempt}: {code}",
            details={"reference": code, "attempt": attempt},
        )

    @staticmethod
    def reference_released(
        code: str,
        request_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFERENCE_RELEASED,
            severity=AuditSeverity.WARNING,
            entity_type="reference",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"Reference released unused: {code}",
            details={"reference": code},
        )

    @staticmethod
    def attachment_stored(
        url: str,
        filename: str,
        size: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_STORED,
            entity_type="attachment",
            correlation_id=correlation_id,
            description=f"Attachment stored: {filename}",
            details={"url": url, "filename": filename, "size_bytes": size},
        )

    @staticmethod
    def credential_applied(
        request: Request,
        identity_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_APPLIED,
            entity_type=request.kind.value,
            entity_id=request.id,
            correlation_id=correlation_id,
            description=f"New credential applied for {identity_id}",
            details={"identity_id": identity_id},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Unexpected failure: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"{service} call failed",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
