"""Reference codes package."""

from treasury.references.generator import (
    ParsedReference,
    ReferenceCodeGenerator,
    build_upi_link,
    format_reference,
    is_valid_reference,
    mask_reference,
    owner_short,
    parse_reference,
)

__all__ = [
    "ParsedReference",
    "ReferenceCodeGenerator",
    "build_upi_link",
    "format_reference",
    "is_valid_reference",
    "mask_reference",
    "owner_short",
    "parse_reference",
]
