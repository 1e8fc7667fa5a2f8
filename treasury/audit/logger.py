"""
Activity Log

Every request creation, transition, refusal, deletion, reference issue
and upload produces one AuditEvent. Each event is written to the local
structured log and, when a mirror is configured, appended to it (Google
Sheets in production) so the treasurer can read it.

The per-request StatusEvent history is the authoritative record. This
log is for tracing, so a mirror that fails to write is reported and the
action that triggered it still succeeds.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from treasury.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from treasury.models.request import Request, StatusEvent
from treasury.services.storage import AuditStorageInterface


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOG_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """
    Writes AuditEvents locally and to an optional mirror.

    Without a storage backend events only reach the local log, which is
    how the workflows run in tests.
    """

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("treasury.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns:
            False if the mirror write failed, True otherwise
        """
        emit = getattr(self._logger, LOG_LEVELS[event.severity])
        emit(event.event_type.value, **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                event_id=str(event.event_id),
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    async def log_request_created(
        self,
        request: Request,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation of a request."""
        await self.log(AuditEventBuilder.request_created(request, correlation_id))

    async def log_transition(
        self,
        request: Request,
        event: StatusEvent,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a committed state transition."""
        await self.log(AuditEventBuilder.transition(request, event, correlation_id))

    async def log_transition_refused(
        self,
        request: Request,
        action: str,
        actor_id: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an action that was refused (wrong state, wrong actor, bad input)."""
        await self.log(
            AuditEventBuilder.transition_refused(
                request=request,
                action=action,
                actor_id=actor_id,
                error_code=error_code,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        )

    async def log_request_deleted(
        self,
        request: Request,
        actor_id: str,
        archived: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a soft delete or archive."""
        await self.log(
            AuditEventBuilder.request_deleted(request, actor_id, archived, correlation_id)
        )

    async def log_reference_generated(
        self,
        code: str,
        request_id: UUID,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log issue of a reference code."""
        await self.log(
            AuditEventBuilder.reference_generated(code, request_id, attempts, correlation_id)
        )

    async def log_reference_collision(
        self,
        code: str,
        attempt: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a reference code that was already taken."""
        await self.log(AuditEventBuilder.reference_collision(code, attempt, correlation_id))

    async def log_reference_released(
        self,
        code: str,
        request_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a reservation given back because its request was never stored."""
        await self.log(AuditEventBuilder.reference_released(code, request_id, correlation_id))

    async def log_attachment_stored(
        self,
        url: str,
        filename: str,
        size: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an attachment upload."""
        await self.log(AuditEventBuilder.attachment_stored(url, filename, size, correlation_id))

    async def log_credential_applied(
        self,
        request: Request,
        identity_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log that an approved credential was applied."""
        await self.log(
            AuditEventBuilder.credential_applied(request, identity_id, correlation_id)
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """An unexpected failure outside the request lifecycle."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """A collaborator (object store, Sheets) failed."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """New id tying together the events of one client action (e.g. one QR request)."""
    return uuid4()
