"""
Reference Codes and UPI Deep Links

There is no payment gateway. The member pays the treasurer through any
UPI app, and the only thing that ties the bank transfer back to a
request is the transaction note. So the note carries a reference code:

    AT-FUND{kind2}-{owner6}-{YYYYMMDDHHmmss}

- kind2: two-digit fund kind code (01 = monthly dues)
- owner6: last six characters of the member's id, uppercased
- timestamp: UTC, second granularity

The code is short enough for a note field and can be parsed back to
(kind, owner, time) without a lookup. It is NOT a secret and is never
used for authorization.

DESIGN DECISION: Two QR requests for the same member in the same second
would produce the same code. Generation for one (owner, kind) is
serialized behind a lock, and the store's reference registry is a
unique index. On conflict the timestamp is bumped one second forward,
a bounded number of times.
"""

import asyncio
import re
import weakref
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional
from urllib.parse import quote, urlencode
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from treasury.audit import AuditLogger
from treasury.errors import MalformedReference, ReferenceExhausted, ValidationError
from treasury.models.request import utc_now
from treasury.services.storage import DuplicateReferenceError, RequestStoreInterface

REFERENCE_PREFIX = "AT-FUND"
REFERENCE_PATTERN = re.compile(r"^AT-FUND(\d{2})-([A-Z0-9]{6})-(\d{14})$")
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
OWNER_SHORT_LENGTH = 6


class ParsedReference(BaseModel):
    """Components recovered from a reference code."""
    model_config = ConfigDict(frozen=True)

    kind_code: str
    owner_short: str
    issued_at: datetime


def owner_short(owner_id: str) -> str:
    """
    Six-character owner slice used in reference codes.

    Only letters and digits survive; ids shorter than six such
    characters are left-padded with zeros.
    """
    cleaned = "".join(c for c in owner_id if c.isascii() and c.isalnum()).upper()
    if not cleaned:
        raise ValidationError(f"Owner id {owner_id!r} has no usable characters")
    return cleaned[-OWNER_SHORT_LENGTH:].rjust(OWNER_SHORT_LENGTH, "0")


def format_reference(kind_code: str, owner: str, issued_at: datetime) -> str:
    if issued_at.tzinfo is not None:
        issued_at = issued_at.astimezone(timezone.utc)
    return f"{REFERENCE_PREFIX}{kind_code}-{owner}-{issued_at.strftime(TIMESTAMP_FORMAT)}"


def parse_reference(code: str) -> ParsedReference:
    """
    Parse a reference code.

    Raises:
        MalformedReference: Anything that deviates from the grammar,
            including a timestamp that is not a real date and time
    """
    if not isinstance(code, str):
        raise MalformedReference(f"Reference must be a string, got {type(code).__name__}")

    match = REFERENCE_PATTERN.match(code)
    if not match:
        raise MalformedReference(f"Not a reference code: {code!r}")

    kind_code, owner, stamp = match.groups()
    try:
        issued_at = datetime.strptime(stamp, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise MalformedReference(f"Invalid timestamp in reference: {stamp}") from e

    return ParsedReference(kind_code=kind_code, owner_short=owner, issued_at=issued_at)


def is_valid_reference(code: str) -> bool:
    try:
        parse_reference(code)
    except MalformedReference:
        return False
    return True


def mask_reference(code: str, filler: str = "x") -> str:
    """
    Replace the variable tail of a reference with filler characters.

    'AT-FUND01-ABC123-20260117145030' -> 'AT-FUND01-xxxxxxxxxxxxxxxxxxxxx'
    The fixed 'AT-FUNDkk-' head stays readable so the member can still
    tell which fund it was.
    """
    match = REFERENCE_PATTERN.match(code)
    if not match:
        return filler * len(code)
    head = f"{REFERENCE_PREFIX}{match.group(1)}-"
    return head + filler * (len(code) - len(head))


def build_upi_link(
    upi_id: str,
    amount: Decimal,
    reference: str,
    payee_name: str = "AuroraTreasury",
) -> str:
    """
    Build a upi://pay deep link.

    The reference goes into the transaction note (tn) untouched apart
    from URL encoding. The treasurer matches statements on the exact
    note, so the case must be preserved.
    """
    if not upi_id or not reference or amount is None:
        raise ValidationError("UPI ID, amount, and reference are required")

    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")

    params = {
        "pa": upi_id,  # Payee address
        "pn": payee_name,  # Payee name
        "am": f"{amount.quantize(Decimal('0.01'))}",
        "cu": "INR",
        "tn": reference,  # Transaction note
    }
    return f"upi://pay?{urlencode(params, quote_via=quote)}"


class ReferenceCodeGenerator:
    """
    Issues unique reference codes.

    Each code is reserved in the request store against the request id it
    will be written to, so uniqueness holds across every request ever
    created, not only the open ones.
    """

    def __init__(
        self,
        store: RequestStoreInterface,
        kind_code: str = "01",
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utc_now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        if not re.fullmatch(r"\d{2}", kind_code):
            raise ValueError(f"Kind code must be two digits, got {kind_code!r}")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._store = store
        self._kind_code = kind_code
        self._max_attempts = max_attempts
        self._clock = clock
        self._audit_logger = audit_logger
        # Entries vanish once no caller holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def kind_code(self) -> str:
        return self._kind_code

    def lock_for(self, owner_id: str) -> asyncio.Lock:
        """The lock serializing generation for this owner and kind."""
        key = (owner_short(owner_id), self._kind_code)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def generate(
        self,
        owner_id: str,
        request_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Issue and reserve a new code for a request.

        Callers that also need to serialize their own work for this owner
        (e.g. the open-request check before generation) should hold
        lock_for(owner_id) and call generate_locked() instead.

        Raises:
            ReferenceExhausted: Every bumped timestamp was already taken
        """
        async with self.lock_for(owner_id):
            return await self.generate_locked(owner_id, request_id, correlation_id)

    async def generate_locked(
        self,
        owner_id: str,
        request_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """generate() for callers already holding lock_for(owner_id)."""
        owner = owner_short(owner_id)
        base = self._clock().replace(microsecond=0)
        code = ""

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(DuplicateReferenceError),
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    code = format_reference(
                        self._kind_code,
                        owner,
                        base + timedelta(seconds=number - 1),
                    )
                    try:
                        await self._store.reserve_reference(code, request_id)
                    except DuplicateReferenceError:
                        if self._audit_logger:
                            await self._audit_logger.log_reference_collision(
                                code, number, correlation_id
                            )
                        raise
        except RetryError as e:
            raise ReferenceExhausted(
                f"No free reference for owner {owner} after {self._max_attempts} attempts",
                details={"owner_short": owner, "last_tried": code},
            ) from e

        if self._audit_logger:
            await self._audit_logger.log_reference_generated(
                code, request_id, number, correlation_id
            )
        return code

    async def release(
        self,
        code: str,
        request_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Give back a code whose request was never stored.

        Called when creating the request fails after the code was
        reserved. A code already shown on a stored request is never
        released.
        """
        released = await self._store.release_reference(code, request_id)
        if released and self._audit_logger:
            await self._audit_logger.log_reference_released(code, request_id, correlation_id)
        return released
