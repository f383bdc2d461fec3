"""Federated login against a delegation-issuing identity provider.

Pattern: Identity Provider as Delegation Broker
------------------------------------------------
The user never hands this client a long-lived key.  Each login generates a
fresh Ed25519 *session key*, and the identity provider signs a delegation
from the user's key to that session key, bounded by ``max_time_to_live``.
The resulting ``DelegationIdentity`` signs with the session key but presents
the user's principal.

Getting the delegation is the ``LoginDriver``'s job.  ``HttpLoginDriver``
talks to the provider over HTTP; an embedding application (a browser shell,
a desktop app) can supply its own driver that opens a window instead.

A provider reply of ``UserInterrupt`` means the user closed the login
window.  That is not an error: ``login`` returns ``None`` and nothing is
logged as a failure.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Protocol

import httpx

from canister_client.errors import AuthError, ProviderUnreachableError
from canister_client.identity.keys import DelegationChain, DelegationIdentity, Ed25519Identity

logger = logging.getLogger(__name__)

USER_INTERRUPT = "UserInterrupt"

# Eight hours, the provider's own default, in nanoseconds.
DEFAULT_MAX_TIME_TO_LIVE = 8 * 60 * 60 * 1_000_000_000


@dataclasses.dataclass(frozen=True)
class AuthorizationRequest:
    """What the provider needs to issue a delegation.

    Attributes:
        provider_url:       Identity provider endpoint.
        session_public_key: DER public key that will receive the delegation.
        max_time_to_live:   Requested delegation lifetime in nanoseconds.
        derivation_origin:  Optional origin the user principal is derived for.
    """

    provider_url: str
    session_public_key: bytes
    max_time_to_live: int
    derivation_origin: str | None = None

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "kind": "authorize-client",
            "sessionPublicKey": self.session_public_key.hex(),
            "maxTimeToLive": str(self.max_time_to_live),
        }
        if self.derivation_origin is not None:
            message["derivationOrigin"] = self.derivation_origin
        return message


class LoginRejected(Exception):
    """The provider answered the authorization request with a failure."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self.reason == USER_INTERRUPT


class LoginDriver(Protocol):
    async def authorize(self, request: AuthorizationRequest) -> DelegationChain: ...


class HttpLoginDriver:
    """Exchanges an authorization request for a delegation chain over HTTP."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._client = http_client

    async def authorize(self, request: AuthorizationRequest) -> DelegationChain:
        url = request.provider_url.rstrip("/") + "/authorize"
        try:
            response = await self._client.post(url, json=request.to_message())
            response.raise_for_status()
            reply = response.json()
        except httpx.HTTPError as exc:
            raise ProviderUnreachableError(
                f"Identity provider at {request.provider_url} is unreachable: {exc}",
                provider=request.provider_url,
            ) from exc
        except ValueError as exc:
            raise AuthError(
                f"Identity provider at {request.provider_url} sent a malformed reply",
                provider=request.provider_url,
            ) from exc

        kind = reply.get("kind") if isinstance(reply, dict) else None
        if kind == "authorize-client-success":
            try:
                return DelegationChain.from_dict({
                    "publicKey": reply["userPublicKey"],
                    "delegations": reply["delegations"],
                })
            except (KeyError, TypeError, ValueError) as exc:
                raise AuthError(
                    f"Identity provider at {request.provider_url} returned an unreadable delegation",
                    provider=request.provider_url,
                ) from exc
        if kind == "authorize-client-failure":
            raise LoginRejected(reply.get("text") or "unknown error")
        raise AuthError(
            f"Unexpected reply kind {kind!r} from identity provider at {request.provider_url}",
            provider=request.provider_url,
        )


class DelegatedAuthClient:
    """Drives one provider's login flow and holds the resulting identity."""

    def __init__(
        self,
        provider_url: str,
        driver: LoginDriver,
        max_time_to_live: int = DEFAULT_MAX_TIME_TO_LIVE,
        derivation_origin: str | None = None,
        key_factory: Callable[[], Ed25519Identity] = Ed25519Identity.generate,
    ) -> None:
        self._provider_url = provider_url
        self._driver = driver
        self._max_time_to_live = max_time_to_live
        self._derivation_origin = derivation_origin
        self._key_factory = key_factory
        self._identity: DelegationIdentity | None = None

    @property
    def provider_url(self) -> str:
        return self._provider_url

    @property
    def identity(self) -> DelegationIdentity | None:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        identity = self._identity
        return (
            identity is not None
            and not identity.is_expired
            and not identity.principal.is_anonymous
        )

    async def login(self) -> DelegationIdentity | None:
        """Run the login flow.

        Returns ``None`` if the user cancelled; raises ``AuthError`` if the
        provider rejected the login or returned an unusable delegation.
        """
        session_key = self._key_factory()
        request = AuthorizationRequest(
            provider_url=self._provider_url,
            session_public_key=session_key.public_key,
            max_time_to_live=self._max_time_to_live,
            derivation_origin=self._derivation_origin,
        )

        try:
            chain = await self._driver.authorize(request)
        except LoginRejected as exc:
            if exc.cancelled:
                logger.debug("Login cancelled by the user at %s", self._provider_url)
                return None
            raise AuthError(
                f"Identity provider at {self._provider_url} rejected the login: {exc.reason}",
                provider=self._provider_url,
            ) from exc

        if chain.is_expired():
            raise AuthError(
                f"Identity provider at {self._provider_url} issued an already-expired delegation",
                provider=self._provider_url,
            )

        self._identity = DelegationIdentity(session_key, chain)
        logger.info("Delegated login succeeded: principal=%s", self._identity.principal)
        return self._identity

    async def logout(self) -> None:
        self._identity = None
