"""
Identifier helpers: parameter key ids and principal ids.

A parameter key id is a fixed-width 32-byte value derived from a
human-readable name with keccak256 over its UTF-8 bytes, the same transform
as ``ethers.utils.id``. Its canonical text form is ``0x`` + 64 lowercase hex
digits.

Principal ids are opaque strings. The registry only rejects degenerate ones:
empty, padded with whitespace, or a "zero" identifier (all ``0`` digits after
an optional ``0x`` prefix).
"""

from __future__ import annotations

import re
from typing import Union

from eth_hash.auto import keccak

from .errors import InvalidArgument

KEY_ID_BYTES = 32

_HEX_KEY = re.compile(r"(0x)?[0-9a-fA-F]{64}")
_ZERO_PRINCIPAL = re.compile(r"(0x)?0+", re.IGNORECASE)

KeyLike = Union[str, bytes]


def key_id(name: str) -> str:
    """Derive the canonical key id for a human-readable parameter name."""
    if not isinstance(name, str):
        raise InvalidArgument("key name", f"expected str, got {type(name).__name__}")
    return "0x" + keccak(name.encode("utf-8")).hex()


def normalize_key(key: KeyLike) -> str:
    """Return the canonical ``0x``-prefixed lowercase form of a key id.

    Accepts 32 raw bytes or a 64-hex-digit string with or without ``0x``.
    """
    if isinstance(key, (bytes, bytearray)):
        if len(key) != KEY_ID_BYTES:
            raise InvalidArgument("key", f"expected {KEY_ID_BYTES} bytes, got {len(key)}")
        return "0x" + bytes(key).hex()
    if isinstance(key, str) and _HEX_KEY.fullmatch(key):
        digits = key[2:] if key.startswith("0x") else key
        return "0x" + digits.lower()
    raise InvalidArgument("key", f"not a {KEY_ID_BYTES}-byte key id: {key!r}")


def is_key_id(value: str) -> bool:
    return isinstance(value, str) and bool(_HEX_KEY.fullmatch(value))


def resolve_key(name_or_key: str) -> str:
    """Treat a well-formed key id as-is, otherwise hash it as a name."""
    if is_key_id(name_or_key):
        return normalize_key(name_or_key)
    return key_id(name_or_key)


def validate_principal(principal: object, argument: str = "principal") -> str:
    if not isinstance(principal, str):
        raise InvalidArgument(argument, f"expected str, got {type(principal).__name__}")
    if not principal:
        raise InvalidArgument(argument, "empty identifier")
    if principal != principal.strip():
        raise InvalidArgument(argument, "identifier has surrounding whitespace")
    if _ZERO_PRINCIPAL.fullmatch(principal):
        raise InvalidArgument(argument, "zero identifier")
    return principal
