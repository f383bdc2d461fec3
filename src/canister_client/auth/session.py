"""Session snapshot describing who the caller currently is.

Pattern: Session Context Propagation
-------------------------------------
The ``SessionManager`` owns the live identity state; everything else sees it
through an immutable ``Session`` snapshot.  A snapshot never changes after
creation: a reconnect or a disconnect produces a new one.

There are two identity sources:

  - ``DELEGATED``      : a federated login produced a delegation chain.
  - ``WALLET_DERIVED`` : a key derived from a Bitcoin wallet address.

When both exist the wallet-derived identity wins (see ``SessionManager``).
"""

from __future__ import annotations

import dataclasses
import datetime
import enum

from canister_client.errors import AuthError
from canister_client.identity.principal import Principal
from canister_client.transport.agent import HttpAgent


class SessionSource(enum.Enum):
    NONE = "none"
    DELEGATED = "delegated"
    WALLET_DERIVED = "wallet_derived"


class AuthProvider(enum.Enum):
    """Where ``SessionManager.connect`` gets an identity from."""

    INTERNET_IDENTITY = "internet-identity"
    WIZZ = "wizz"
    UNISAT = "unisat"
    XVERSE = "xverse"

    @property
    def is_wallet(self) -> bool:
        return self is not AuthProvider.INTERNET_IDENTITY

    @property
    def display_name(self) -> str:
        return {
            AuthProvider.INTERNET_IDENTITY: "Internet Identity",
            AuthProvider.WIZZ: "Wizz",
            AuthProvider.UNISAT: "Unisat",
            AuthProvider.XVERSE: "Xverse",
        }[self]

    @classmethod
    def parse(cls, value: str | AuthProvider) -> AuthProvider:
        if isinstance(value, AuthProvider):
            return value
        normalized = value.strip().lower()
        # Xverse injects itself as ``BitcoinProvider``.
        if normalized == "bitcoinprovider":
            normalized = "xverse"
        for provider in cls:
            if provider.value == normalized:
                return provider
        raise AuthError(f"Unsupported wallet provider: {value}", provider=value)


@dataclasses.dataclass(frozen=True)
class Session:
    """Immutable snapshot of the active session.

    Attributes:
        source:     Which identity source won precedence.
        principal:  The caller's principal, ``None`` when unauthenticated.
        agent:      The memoised agent for that identity, if one was built.
        provider:   The provider that produced the identity.
        created_at: UTC timestamp of the snapshot.
    """

    source: SessionSource
    principal: Principal | None
    agent: HttpAgent | None
    provider: AuthProvider | None
    created_at: datetime.datetime

    @classmethod
    def unauthenticated(cls) -> Session:
        return cls(
            source=SessionSource.NONE,
            principal=None,
            agent=None,
            provider=None,
            created_at=datetime.datetime.now(datetime.UTC),
        )

    @property
    def is_authenticated(self) -> bool:
        return self.source is not SessionSource.NONE

    def __str__(self) -> str:
        provider = self.provider.value if self.provider else None
        return f"Session(source={self.source.value}, principal={self.principal}, provider={provider})"
