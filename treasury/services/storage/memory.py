"""
In-Memory Storage Implementation

Used for tests and single-process deployments. Behaves like a document
store with a unique index on reference codes and on open keys:

- Every read returns a deep copy, so callers can never mutate stored state
  except through insert()/replace().
- All operations run under one asyncio.Lock, which makes replace() a true
  compare-and-set.
"""

import asyncio
from typing import Iterable, Optional
from uuid import UUID

from treasury.models.audit import AuditEvent
from treasury.models.request import (
    AnyRequest,
    FundPaymentRequest,
    RequestKind,
    RequestState,
)
from treasury.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    DuplicateOpenRequestError,
    DuplicateReferenceError,
    NotFoundError,
    RequestStoreInterface,
    VersionConflictError,
)


class InMemoryRequestStore(RequestStoreInterface):
    """Dictionary-backed request store with optimistic versioning."""

    def __init__(self):
        self._requests: dict[UUID, AnyRequest] = {}
        self._open_keys: dict[str, UUID] = {}
        self._references: dict[str, UUID] = {}
        self._lock = asyncio.Lock()

    def _claim_open_key(self, request: AnyRequest) -> None:
        if request.open_key is None:
            return
        holder = self._open_keys.get(request.open_key)
        if holder is not None and holder != request.id:
            raise DuplicateOpenRequestError(request.open_key, holder)

    async def insert(self, request: AnyRequest) -> AnyRequest:
        async with self._lock:
            if request.id in self._requests:
                raise DuplicateError(f"Request already exists: {request.id}")
            self._claim_open_key(request)

            stored = request.model_copy(deep=True)
            stored.version = 1
            self._requests[stored.id] = stored
            if stored.open_key is not None:
                self._open_keys[stored.open_key] = stored.id
            return stored.model_copy(deep=True)

    async def get(self, request_id: UUID) -> Optional[AnyRequest]:
        async with self._lock:
            stored = self._requests.get(request_id)
            return stored.model_copy(deep=True) if stored else None

    async def replace(
        self,
        request: AnyRequest,
        expected_version: int,
    ) -> AnyRequest:
        async with self._lock:
            current = self._requests.get(request.id)
            if current is None:
                raise NotFoundError(f"Request not found: {request.id}")
            if current.version != expected_version:
                raise VersionConflictError(request.id, expected_version, current.version)
            self._claim_open_key(request)

            stored = request.model_copy(deep=True)
            stored.version = expected_version + 1

            if current.open_key is not None and current.open_key != stored.open_key:
                self._open_keys.pop(current.open_key, None)
            if stored.open_key is not None:
                self._open_keys[stored.open_key] = stored.id

            self._requests[stored.id] = stored
            return stored.model_copy(deep=True)

    async def find(
        self,
        kind: Optional[RequestKind] = None,
        requester_id: Optional[str] = None,
        states: Optional[Iterable[RequestState]] = None,
        period_key: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[AnyRequest]:
        wanted_states = set(states) if states is not None else None
        async with self._lock:
            results = []
            for request in self._requests.values():
                if not include_deleted and request.is_deleted:
                    continue
                if kind and request.kind != kind:
                    continue
                if requester_id and request.requester_id != requester_id:
                    continue
                if wanted_states is not None and request.state not in wanted_states:
                    continue
                if period_key is not None:
                    if not isinstance(request, FundPaymentRequest):
                        continue
                    if request.period.key != period_key:
                        continue
                results.append(request.model_copy(deep=True))

            results.sort(key=lambda r: r.created_at)
            return results

    async def find_by_open_key(self, open_key: str) -> Optional[AnyRequest]:
        async with self._lock:
            holder = self._open_keys.get(open_key)
            if holder is None:
                return None
            return self._requests[holder].model_copy(deep=True)

    async def reserve_reference(self, code: str, request_id: UUID) -> None:
        async with self._lock:
            if code in self._references:
                raise DuplicateReferenceError(f"Reference already issued: {code}")
            self._references[code] = request_id

    async def get_reference_holder(self, code: str) -> Optional[UUID]:
        async with self._lock:
            return self._references.get(code)

    async def release_reference(self, code: str, request_id: UUID) -> bool:
        async with self._lock:
            if self._references.get(code) != request_id or request_id in self._requests:
                return False
            del self._references[code]
            return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
