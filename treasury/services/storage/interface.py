"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the in-memory store for a real database later
2. Use in-memory storage for testing
3. Keep workflow logic decoupled from storage implementation

Two guarantees every implementation must give:
- replace() is a compare-and-set on the request's version. A stale
  writer gets VersionConflictError, never a silent overwrite.
- open_key is unique among live requests, and reference codes are
  unique forever. A violation raises a DuplicateError subclass.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from treasury.models.audit import AuditEvent
from treasury.models.request import AnyRequest, RequestKind, RequestState


class RequestStoreInterface(ABC):
    """
    Abstract interface for request storage operations.

    Requests are whole documents: state, history and version are
    written together or not at all.
    """

    @abstractmethod
    async def insert(self, request: AnyRequest) -> AnyRequest:
        """
        Insert a new request.

        Returns:
            The stored request (version 1)

        Raises:
            DuplicateOpenRequestError: Another live request holds its open_key
            DuplicateError: A request with this ID already exists
        """
        pass

    @abstractmethod
    async def get(self, request_id: UUID) -> Optional[AnyRequest]:
        """
        Retrieve a request by ID (including soft-deleted ones).

        Returns:
            The request if found, None otherwise
        """
        pass

    @abstractmethod
    async def replace(
        self,
        request: AnyRequest,
        expected_version: int,
    ) -> AnyRequest:
        """
        Atomically replace a request if nobody else wrote it first.

        Args:
            request: The full new document
            expected_version: Version the caller read

        Returns:
            The stored request with version bumped by one

        Raises:
            NotFoundError: Request doesn't exist
            VersionConflictError: Stored version differs from expected_version
            DuplicateOpenRequestError: open_key already held by another request
        """
        pass

    @abstractmethod
    async def find(
        self,
        kind: Optional[RequestKind] = None,
        requester_id: Optional[str] = None,
        states: Optional[Iterable[RequestState]] = None,
        period_key: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[AnyRequest]:
        """
        List requests matching all given filters, oldest first.

        Args:
            kind: Filter by request kind
            requester_id: Filter by owner
            states: Filter by current state
            period_key: Filter fund payments by period ('2026-01')
            include_deleted: Also return soft-deleted requests
        """
        pass

    @abstractmethod
    async def find_by_open_key(self, open_key: str) -> Optional[AnyRequest]:
        """Return the live request currently holding open_key, if any."""
        pass

    @abstractmethod
    async def reserve_reference(self, code: str, request_id: UUID) -> None:
        """
        Claim a reference code for a request (compare-and-set).

        Raises:
            DuplicateReferenceError: Code already claimed
        """
        pass

    @abstractmethod
    async def get_reference_holder(self, code: str) -> Optional[UUID]:
        """Return the request ID a reference code was issued to."""
        pass

    @abstractmethod
    async def release_reference(self, code: str, request_id: UUID) -> bool:
        """
        Give back a reservation whose request was never stored.

        Only removes the code if request_id still holds it and no
        request with that ID exists. Returns whether it was removed.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for activity log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events of one client action in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for one request in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class DuplicateReferenceError(DuplicateError):
    """Reference code already issued."""
    pass


class DuplicateOpenRequestError(DuplicateError):
    """Another live request already holds this open key."""

    def __init__(self, open_key: str, existing_id: UUID):
        super().__init__(f"Open key {open_key} already held by {existing_id}")
        self.open_key = open_key
        self.existing_id = existing_id


class VersionConflictError(StorageError):
    """Request was written by someone else since it was read."""

    def __init__(self, request_id: UUID, expected: int, actual: int):
        super().__init__(
            f"Request {request_id} is at version {actual}, expected {expected}"
        )
        self.request_id = request_id
        self.expected = expected
        self.actual = actual


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
