"""Tests for reference codes, UPI links and masking."""

import asyncio
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from treasury.audit import AuditLogger
from treasury.errors import MalformedReference, ReferenceExhausted, ValidationError
from treasury.models.audit import AuditEventType
from treasury.references import (
    ReferenceCodeGenerator,
    build_upi_link,
    is_valid_reference,
    mask_reference,
    owner_short,
    parse_reference,
)
from treasury.services.storage import InMemoryAuditStorage, InMemoryRequestStore

from tests.conftest import FixedClock

START = datetime(2026, 1, 17, 14, 50, 30, tzinfo=timezone.utc)


class TickingClock:
    """Moves forward one second on every read."""

    def __init__(self, start: datetime):
        self.current = start - timedelta(seconds=1)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class TestOwnerShort:
    """Tests for the owner slice."""

    def test_last_six_uppercased(self):
        """Test the last six characters are used, uppercased."""
        assert owner_short("64f1a2b3c4d5e6f7a8b9c0d1") == "B9C0D1"

    def test_short_ids_are_padded(self):
        """Test ids shorter than six characters are zero-padded."""
        assert owner_short("ab") == "0000AB"

    def test_punctuation_is_dropped(self):
        """Test non-alphanumerics never reach the code."""
        assert owner_short("member-5f2a-9c") == "5F2A9C"

    def test_unusable_id_rejected(self):
        """Test an id with no letters or digits is rejected."""
        with pytest.raises(ValidationError):
            owner_short("---")


class TestParseReference:
    """Tests for the reference grammar."""

    def test_parse_components(self):
        """Test a valid code parses into its parts."""
        parsed = parse_reference("AT-FUND01-U123AB-20260117145030")
        assert parsed.kind_code == "01"
        assert parsed.owner_short == "U123AB"
        assert parsed.issued_at == START

    @pytest.mark.parametrize("code", [
        "",
        "AT-FUND1-U123AB-20260117145030",
        "AT-FUND01-u123ab-20260117145030",
        "AT-FUND01-U123A-20260117145030",
        "AT-FUND01-U123AB-2026011714503",
        "AT-FUND01-U123AB-20260117145030-1",
        "at-fund01-U123AB-20260117145030",
        " AT-FUND01-U123AB-20260117145030",
        "AT-FUND01-U123AB-20261317145030",
        "AT-FUND01-U123AB-20260230120000",
        "AT-PARTY-U123AB-20260117145030",
    ])
    def test_malformed_references(self, code):
        """Test every grammar deviation raises MalformedReference."""
        with pytest.raises(MalformedReference):
            parse_reference(code)
        assert is_valid_reference(code) is False

    def test_non_string_rejected(self):
        """Test non-strings raise MalformedReference, not TypeError."""
        with pytest.raises(MalformedReference):
            parse_reference(None)


class TestReferenceCodeGenerator:
    """Tests for ReferenceCodeGenerator."""

    async def test_generate_format_and_round_trip(self):
        """Test the generated code parses back to kind and owner."""
        generator = ReferenceCodeGenerator(InMemoryRequestStore(), clock=FixedClock(START))

        code = await generator.generate("64f1a2b3c4d5e6f7a8b9c0d1", uuid4())

        assert code == "AT-FUND01-B9C0D1-20260117145030"
        parsed = parse_reference(code)
        assert parsed.kind_code == "01"
        assert parsed.owner_short == owner_short("64f1a2b3c4d5e6f7a8b9c0d1")

    async def test_code_is_reserved_for_request(self):
        """Test the store knows which request owns the code."""
        store = InMemoryRequestStore()
        generator = ReferenceCodeGenerator(store, clock=FixedClock(START))
        request_id = uuid4()

        code = await generator.generate("member-1", request_id)

        assert await store.get_reference_holder(code) == request_id

    async def test_same_second_bumps_forward(self):
        """Test two calls in the same second never collide."""
        generator = ReferenceCodeGenerator(InMemoryRequestStore(), clock=FixedClock(START))

        first = await generator.generate("member-1", uuid4())
        second = await generator.generate("member-1", uuid4())

        assert first != second
        assert parse_reference(second).issued_at == START + timedelta(seconds=1)

    async def test_concurrent_same_owner_serialized(self):
        """Test concurrent generation for one owner yields distinct codes."""
        generator = ReferenceCodeGenerator(
            InMemoryRequestStore(), max_attempts=10, clock=FixedClock(START)
        )

        codes = await asyncio.gather(*[
            generator.generate("member-1", uuid4()) for _ in range(8)
        ])

        assert len(set(codes)) == 8

    async def test_exhaustion(self):
        """Test bounded retries end in ReferenceExhausted."""
        store = InMemoryRequestStore()
        generator = ReferenceCodeGenerator(store, max_attempts=3, clock=FixedClock(START))
        for _ in range(3):
            await generator.generate("member-1", uuid4())

        with pytest.raises(ReferenceExhausted):
            await generator.generate("member-1", uuid4())

    async def test_collisions_are_logged(self):
        """Test each bump is recorded in the activity log."""
        audit_storage = InMemoryAuditStorage()
        generator = ReferenceCodeGenerator(
            InMemoryRequestStore(),
            clock=FixedClock(START),
            audit_logger=AuditLogger(audit_storage),
        )
        await generator.generate("member-1", uuid4())
        await generator.generate("member-1", uuid4())

        events = await audit_storage.get_recent_events()
        types = [e.event_type for e in events]
        assert types.count(AuditEventType.REFERENCE_GENERATED) == 2
        assert types.count(AuditEventType.REFERENCE_COLLISION) == 1

    async def test_release_frees_code(self):
        """Test a released code can be issued again and the release is logged."""
        audit_storage = InMemoryAuditStorage()
        generator = ReferenceCodeGenerator(
            InMemoryRequestStore(),
            clock=FixedClock(START),
            audit_logger=AuditLogger(audit_storage),
        )
        request_id = uuid4()
        code = await generator.generate("member-1", request_id)

        assert await generator.release(code, request_id) is True
        assert await generator.generate("member-1", uuid4()) == code

        events = await audit_storage.get_recent_events()
        assert AuditEventType.REFERENCE_RELEASED in [e.event_type for e in events]

    async def test_locks_are_dropped(self):
        """Test per-owner locks are not kept after generation."""
        generator = ReferenceCodeGenerator(InMemoryRequestStore(), clock=TickingClock(START))
        for i in range(20):
            await generator.generate(f"member-{i:02d}", uuid4())

        assert len(generator._locks) == 0

    async def test_ten_thousand_codes_are_unique(self):
        """Test 10,000 sequential codes over distinct triples never repeat."""
        generator = ReferenceCodeGenerator(InMemoryRequestStore(), clock=TickingClock(START))
        owners = [f"member-{i:04d}" for i in range(50)]

        codes = set()
        for i in range(10_000):
            codes.add(await generator.generate(owners[i % len(owners)], uuid4()))

        assert len(codes) == 10_000

    def test_rejects_bad_kind_code(self):
        """Test the kind code must be two digits."""
        with pytest.raises(ValueError):
            ReferenceCodeGenerator(InMemoryRequestStore(), kind_code="1")


class TestUpiLink:
    """Tests for the UPI deep link builder."""

    def test_link_format(self):
        """Test the link carries all five parameters."""
        link = build_upi_link(
            upi_id="treasurer@okaxis",
            amount=Decimal("500"),
            reference="AT-FUND01-U123AB-20260117145030",
            payee_name="AuroraTreasury",
        )
        assert link == (
            "upi://pay?pa=treasurer%40okaxis&pn=AuroraTreasury&am=500.00"
            "&cu=INR&tn=AT-FUND01-U123AB-20260117145030"
        )

    def test_reference_kept_verbatim(self):
        """Test the note is not case-folded or altered."""
        reference = "AT-FUND01-ABCDEF-20260117145030"
        link = build_upi_link("t@upi", Decimal("50.5"), reference)
        assert f"tn={reference}" in link
        assert "am=50.50" in link

    def test_payee_name_is_encoded(self):
        """Test spaces in the payee name are percent-encoded."""
        link = build_upi_link("t@upi", Decimal("50"), "AT-FUND01-ABCDEF-20260117145030", "Aurora Treasury")
        assert "pn=Aurora%20Treasury" in link

    @pytest.mark.parametrize("upi_id,amount,reference", [
        ("", Decimal("50"), "AT-FUND01-ABCDEF-20260117145030"),
        ("t@upi", Decimal("0"), "AT-FUND01-ABCDEF-20260117145030"),
        ("t@upi", Decimal("50"), ""),
    ])
    def test_required_inputs(self, upi_id, amount, reference):
        """Test missing inputs are rejected."""
        with pytest.raises(ValidationError):
            build_upi_link(upi_id, amount, reference)


class TestMaskReference:
    """Tests for the requester-facing mask."""

    def test_mask_keeps_fixed_head(self):
        """Test only the variable tail is replaced."""
        masked = mask_reference("AT-FUND01-U123AB-20260117145030")
        assert masked == "AT-FUND01-" + "x" * 21
        assert len(masked) == len("AT-FUND01-U123AB-20260117145030")

    def test_custom_filler(self):
        """Test the filler character is configurable."""
        assert mask_reference("AT-FUND01-U123AB-20260117145030", "*").endswith("*" * 21)

    def test_malformed_input_fully_masked(self):
        """Test a non-reference is masked entirely."""
        masked = mask_reference("secret-note")
        assert re.fullmatch(r"x+", masked)
