"""Signing identities: key-backed, anonymous, and delegation-backed.

Every identity exposes the same three things the transport needs: a
``principal``, a DER-encoded ``public_key`` (``None`` for anonymous) and a
``sign`` method.  Agents never care which kind they hold.

A ``DelegationIdentity`` signs with a short-lived session key while
presenting the principal of the key that delegated to it.  The chain is
serialised as JSON so it can be handed around (and persisted) the same way
on every side of the login flow.
"""

from __future__ import annotations

import dataclasses
import json
import time
from typing import Any, Protocol

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from canister_client.identity.principal import Principal


class Identity(Protocol):
    @property
    def principal(self) -> Principal: ...

    @property
    def public_key(self) -> bytes | None: ...

    def sign(self, payload: bytes) -> bytes | None: ...


class AnonymousIdentity:
    """The unauthenticated caller.  Requests carry no key and no signature."""

    @property
    def principal(self) -> Principal:
        return Principal.anonymous()

    @property
    def public_key(self) -> None:
        return None

    def sign(self, payload: bytes) -> None:
        return None

    def __repr__(self) -> str:
        return "AnonymousIdentity()"


class Ed25519Identity:
    """An identity backed by an Ed25519 keypair held in process memory."""

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key
        self._public_key = private_key.public_key().public_bytes(
            Encoding.DER, PublicFormat.SubjectPublicKeyInfo,
        )
        self._principal = Principal.self_authenticating(self._public_key)

    @classmethod
    def from_seed(cls, seed: bytes) -> Ed25519Identity:
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def generate(cls) -> Ed25519Identity:
        return cls(Ed25519PrivateKey.generate())

    @property
    def principal(self) -> Principal:
        return self._principal

    @property
    def public_key(self) -> bytes:
        return self._public_key

    def sign(self, payload: bytes) -> bytes:
        return self._private_key.sign(payload)

    def __repr__(self) -> str:
        return f"Ed25519Identity(principal={self._principal})"


@dataclasses.dataclass(frozen=True)
class Delegation:
    """One link of a chain: *pubkey* may act until *expiration* (ns since epoch).

    Attributes:
        pubkey:      DER public key receiving the delegation.
        expiration:  Expiry as nanoseconds since the Unix epoch.
        signature:   Signature by the previous key in the chain.
        targets:     Optional canister ids the delegation is restricted to.
    """

    pubkey: bytes
    expiration: int
    signature: bytes
    targets: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        delegation: dict[str, Any] = {
            "pubkey": self.pubkey.hex(),
            "expiration": format(self.expiration, "x"),
        }
        if self.targets is not None:
            delegation["targets"] = list(self.targets)
        return {"delegation": delegation, "signature": self.signature.hex()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Delegation:
        inner = data["delegation"]
        targets = inner.get("targets")
        return cls(
            pubkey=bytes.fromhex(inner["pubkey"]),
            expiration=int(inner["expiration"], 16),
            signature=bytes.fromhex(data["signature"]),
            targets=tuple(targets) if targets is not None else None,
        )


@dataclasses.dataclass(frozen=True)
class DelegationChain:
    """The credential produced by the federated provider.

    ``public_key`` is the root (user) key; its self-authenticating principal
    is the caller's principal for the lifetime of the chain.
    """

    public_key: bytes
    delegations: tuple[Delegation, ...]

    @property
    def expiration(self) -> int:
        return min((d.expiration for d in self.delegations), default=0)

    def is_expired(self, now_ns: int | None = None) -> bool:
        if now_ns is None:
            now_ns = time.time_ns()
        return not self.delegations or now_ns >= self.expiration

    def to_json(self) -> str:
        return json.dumps({
            "publicKey": self.public_key.hex(),
            "delegations": [d.to_dict() for d in self.delegations],
        })

    @classmethod
    def from_json(cls, raw: str) -> DelegationChain:
        return cls.from_dict(json.loads(raw))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DelegationChain:
        return cls(
            public_key=bytes.fromhex(data["publicKey"]),
            delegations=tuple(Delegation.from_dict(d) for d in data["delegations"]),
        )


class DelegationIdentity:
    """Signs with *session_key* on behalf of the chain's root principal."""

    def __init__(self, session_key: Ed25519Identity, chain: DelegationChain) -> None:
        self._session_key = session_key
        self._chain = chain
        self._principal = Principal.self_authenticating(chain.public_key)

    @property
    def principal(self) -> Principal:
        return self._principal

    @property
    def public_key(self) -> bytes:
        return self._chain.public_key

    @property
    def chain(self) -> DelegationChain:
        return self._chain

    @property
    def is_expired(self) -> bool:
        return self._chain.is_expired()

    def sign(self, payload: bytes) -> bytes:
        return self._session_key.sign(payload)

    def __repr__(self) -> str:
        return f"DelegationIdentity(principal={self._principal}, expired={self.is_expired})"
