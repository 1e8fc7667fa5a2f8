"""
Audit Trail

Append-only per-request history of state transitions.

The trail lives on the request document, so the new state and its
StatusEvent are always written together by a single store.replace().
This module is the only place that appends to a history or changes
request.state.
"""

from datetime import datetime
from typing import Optional

from treasury.models.request import (
    Actor,
    Request,
    RequestState,
    StatusEvent,
    utc_now,
)


class AuditIntegrityError(Exception):
    """A request's history is not a contiguous walk ending at its state."""
    pass


class AuditTrail:
    """Appends StatusEvents and checks history invariants."""

    def record(
        self,
        request: Request,
        target: RequestState,
        actor: Actor,
        reason: Optional[str] = None,
        attachment_ref: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> StatusEvent:
        """
        Append one StatusEvent and move request.state to target.

        The request passed in must be a working copy; it is persisted by
        the caller.
        """
        source = request.history[-1].target_state if request.history else None
        previous = request.history[-1].timestamp if request.history else None
        timestamp = at or utc_now()
        # Insertion order must also be timestamp order
        if previous is not None and timestamp < previous:
            timestamp = previous

        event = StatusEvent(
            source_state=source,
            target_state=target,
            actor=actor,
            timestamp=timestamp,
            reason=reason,
            attachment_ref=attachment_ref,
        )
        request.history.append(event)
        request.state = target
        request.updated_at = timestamp
        return event

    @staticmethod
    def current_state(request: Request) -> Optional[RequestState]:
        """Target state of the most recent entry."""
        return request.current_state

    @staticmethod
    def verify(request: Request) -> None:
        """
        Check the history invariants.

        - First entry has no source state
        - Each entry's source is the previous entry's target
        - Timestamps never go backwards
        - The last target equals request.state

        Raises:
            AuditIntegrityError: On the first violation found
        """
        if not request.history:
            raise AuditIntegrityError(f"Request {request.id} has no history")

        previous: Optional[StatusEvent] = None
        for index, event in enumerate(request.history):
            expected_source = previous.target_state if previous else None
            if event.source_state != expected_source:
                raise AuditIntegrityError(
                    f"Entry {index} of {request.id} starts at {event.source_state}, "
                    f"expected {expected_source}"
                )
            if previous and event.timestamp < previous.timestamp:
                raise AuditIntegrityError(f"Entry {index} of {request.id} goes back in time")
            previous = event

        if request.history[-1].target_state != request.state:
            raise AuditIntegrityError(
                f"Request {request.id} is {request.state} but history ends at "
                f"{request.history[-1].target_state}"
            )
