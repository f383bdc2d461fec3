"""Bitcoin wallet connection and wallet-derived identities.

Pattern: Normalise, Then Derive
--------------------------------
Wallet extensions disagree on what "connect" returns: a bare address, a
list of addresses, ``{"address": ...}`` or ``{"accounts": [...]}``.
``extract_address`` folds all four into one tagged result,
``Address | ExtractionFailed``, and ``WalletKeyDeriver`` matches on that
result instead of probing the raw response.

The identity is then a pure function of the address: SHA-256 of the
address is used as an Ed25519 seed.  The same address therefore always
yields the same principal, in this process and in any other, which keeps
repeated connects idempotent.

SECURITY: this scheme proves knowledge of an address string, not control of
the matching private key.  Anyone who knows an address can act as its owner.
It is a functional placeholder; production use requires a signature-based
delegation (sign-in-with-Bitcoin) in its place.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import inspect
import logging
from typing import Any, Mapping

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from canister_client.auth.session import AuthProvider
from canister_client.errors import AuthError, ExtractionError, WalletLockedError, WalletNotInstalledError
from canister_client.identity.keys import Ed25519Identity

logger = logging.getLogger(__name__)

# Where each extension injects itself into the host environment.
_INJECTION_PATHS: dict[AuthProvider, tuple[str, ...]] = {
    AuthProvider.WIZZ: ("wizz",),
    AuthProvider.UNISAT: ("unisat",),
    AuthProvider.XVERSE: ("XverseProviders", "BitcoinProvider"),
}


@dataclasses.dataclass(frozen=True)
class Address:
    value: str


@dataclasses.dataclass(frozen=True)
class ExtractionFailed:
    reason: str


Extraction = Address | ExtractionFailed


def extract_address(response: object) -> Extraction:
    """Pull the first address out of a wallet's connect response."""
    match response:
        case str() as text:
            return _non_empty(text)
        case [first, *_]:
            return extract_address(first) if isinstance(first, str) else ExtractionFailed(
                f"account list holds {type(first).__name__}, not an address"
            )
        case []:
            return ExtractionFailed("wallet returned an empty account list")
        case {"address": str() as text}:
            return _non_empty(text)
        case {"accounts": [first, *_]}:
            return extract_address(first)
        case {"accounts": _}:
            return ExtractionFailed("wallet returned no accounts")
        case object(address=str() as text):
            return _non_empty(text)
        case _:
            return ExtractionFailed(f"unrecognised wallet response: {type(response).__name__}")


def _non_empty(text: str) -> Extraction:
    address = text.strip()
    if not address:
        return ExtractionFailed("wallet returned an empty address")
    return Address(address)


class WalletIdentity(Ed25519Identity):
    """An Ed25519 identity derived from a wallet address."""

    def __init__(self, seed: bytes, address: str, provider: AuthProvider | None = None) -> None:
        super().__init__(Ed25519PrivateKey.from_private_bytes(seed))
        self.address = address
        self.provider = provider

    def __repr__(self) -> str:
        return f"WalletIdentity(address={self.address}, principal={self.principal})"


class WalletKeyDeriver:
    """Turns a raw wallet response into a deterministic ``WalletIdentity``."""

    def derive_identity(self, raw_response: object, provider: AuthProvider | None = None) -> WalletIdentity:
        """Raises ``ExtractionError`` when no address can be found."""
        match extract_address(raw_response):
            case Address(value=address):
                return self.identity_for_address(address, provider)
            case ExtractionFailed(reason=reason):
                raise ExtractionError(
                    f"Could not read a wallet address: {reason}",
                    provider=provider.value if provider else None,
                )

    @staticmethod
    def identity_for_address(address: str, provider: AuthProvider | None = None) -> WalletIdentity:
        seed = hashlib.sha256(address.encode("utf-8")).digest()
        return WalletIdentity(seed, address, provider)


class WalletEnvironment:
    """The host environment wallet extensions inject themselves into.

    Extensions may appear late (after page load in a browser), so lookups are
    made on every ``resolve`` call rather than cached.
    """

    def __init__(self, globals_: Mapping[str, Any] | None = None) -> None:
        self._globals: dict[str, Any] = dict(globals_ or {})

    def inject(self, name: str, extension: Any) -> None:
        self._globals[name] = extension

    def remove(self, name: str) -> None:
        self._globals.pop(name, None)

    def resolve(self, provider: AuthProvider) -> Any | None:
        path = _INJECTION_PATHS.get(provider)
        if path is None:
            return None

        current: Any = self._globals.get(path[0])
        for part in path[1:]:
            if current is None:
                return None
            if isinstance(current, Mapping):
                current = current.get(part)
            else:
                current = getattr(current, part, None)

        # Xverse exposes a provider class rather than an instance.
        if isinstance(current, type):
            current = current()
        return current


class WalletConnector:
    """Finds a wallet extension and asks it for its accounts."""

    def __init__(
        self,
        environment: WalletEnvironment,
        poll_interval: float = 0.1,
        poll_timeout: float = 1.0,
    ) -> None:
        self._environment = environment
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout

    async def detect(self, provider: AuthProvider) -> Any:
        """Return the injected extension, waiting briefly for late injection."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._poll_timeout
        while True:
            extension = self._environment.resolve(provider)
            if extension is not None:
                return extension
            if loop.time() >= deadline:
                raise WalletNotInstalledError(
                    f"{provider.display_name} wallet not found. "
                    f"Please install the {provider.display_name} wallet extension.",
                    provider=provider.value,
                )
            logger.debug("Waiting for %s wallet extension to be injected", provider.value)
            await asyncio.sleep(self._poll_interval)

    async def request_accounts(self, provider: AuthProvider) -> Any:
        extension = await self.detect(provider)

        if callable(getattr(extension, "requestAccounts", None)):
            call = extension.requestAccounts
        elif callable(getattr(extension, "request", None)):
            def call() -> Any:
                return extension.request({"method": "requestAccounts"})
        elif callable(getattr(extension, "enable", None)):
            call = extension.enable
        else:
            raise AuthError(
                f"{provider.display_name} wallet exposes no supported connect method",
                provider=provider.value,
            )

        try:
            response = call()
            if inspect.isawaitable(response):
                response = await response
        except Exception as exc:
            raise WalletLockedError(
                f"{provider.display_name} wallet refused the connection request. "
                f"Make sure the extension is unlocked: {exc}",
                provider=provider.value,
            ) from exc
        return response
