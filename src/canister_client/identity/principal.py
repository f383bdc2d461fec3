"""Principals: the opaque identifiers of callers and canisters.

The textual form is ``base32(crc32(raw) || raw)`` in lowercase without
padding, split into groups of five characters by dashes.  Canister ids use
the same encoding, so the parser here is also the syntactic validator for
every configured canister identifier.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import hashlib
import re

_MAX_LENGTH_IN_BYTES = 29
_SELF_AUTHENTICATING_SUFFIX = 0x02
_ANONYMOUS_SUFFIX = 0x04
_TEXT_RE = re.compile(r"^[a-z2-7]{1,5}(-[a-z2-7]{1,5})*$")


class InvalidPrincipalError(ValueError):
    """Raised when a textual principal is malformed."""


@dataclasses.dataclass(frozen=True)
class Principal:
    """An immutable principal backed by its raw bytes."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) > _MAX_LENGTH_IN_BYTES:
            raise InvalidPrincipalError(
                f"Principal is {len(self.raw)} bytes; the maximum is {_MAX_LENGTH_IN_BYTES}"
            )

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(bytes([_ANONYMOUS_SUFFIX]))

    @classmethod
    def management_canister(cls) -> Principal:
        return cls(b"")

    @classmethod
    def self_authenticating(cls, der_public_key: bytes) -> Principal:
        digest = hashlib.sha224(der_public_key).digest()
        return cls(digest + bytes([_SELF_AUTHENTICATING_SUFFIX]))

    @classmethod
    def from_text(cls, text: str) -> Principal:
        """Parse and checksum-verify a textual principal.

        Raises ``InvalidPrincipalError`` on bad alphabet, bad grouping,
        checksum mismatch, or an over-long value.
        """
        candidate = text.strip()
        if not _TEXT_RE.match(candidate):
            raise InvalidPrincipalError(f"Invalid principal text: {text!r}")

        compact = candidate.replace("-", "").upper()
        compact += "=" * (-len(compact) % 8)
        try:
            decoded = base64.b32decode(compact)
        except binascii.Error as exc:
            raise InvalidPrincipalError(f"Invalid principal text: {text!r}") from exc

        if len(decoded) < 4:
            raise InvalidPrincipalError(f"Principal text too short: {text!r}")

        checksum, raw = decoded[:4], decoded[4:]
        principal = cls(raw)
        if _crc32(raw) != checksum or principal.to_text() != candidate:
            raise InvalidPrincipalError(f"Principal checksum mismatch: {text!r}")
        return principal

    @property
    def is_anonymous(self) -> bool:
        return self.raw == bytes([_ANONYMOUS_SUFFIX])

    def to_text(self) -> str:
        encoded = base64.b32encode(_crc32(self.raw) + self.raw).decode("ascii")
        encoded = encoded.rstrip("=").lower()
        return "-".join(encoded[i:i + 5] for i in range(0, len(encoded), 5))

    def __str__(self) -> str:
        return self.to_text()


def _crc32(data: bytes) -> bytes:
    return (binascii.crc32(data) & 0xFFFFFFFF).to_bytes(4, "big")


def is_valid_principal_text(text: str) -> bool:
    try:
        Principal.from_text(text)
    except InvalidPrincipalError:
        return False
    return True
