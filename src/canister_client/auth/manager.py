"""Owner of the process-wide session: identities, precedence and agents.

Pattern: Single Session Owner
------------------------------
``SessionManager`` is the only component that creates, replaces or clears
identity state.  Everything else asks it for a principal or an agent.

Precedence is evaluated on every lookup and never cached across sources:

  1. A wallet-derived identity with a non-anonymous principal wins outright,
     even if a delegated session also exists.
  2. Otherwise a delegated identity that is unexpired and non-anonymous.
  3. Otherwise the caller is unauthenticated.

The authenticated agent is memoised 1:1 with the winning identity.  When the
winner changes, a new agent is built and the old one is dropped.  The
anonymous agent is separate, long-lived, and survives ``disconnect``.

Concurrency: concurrent ``connect`` calls for the same provider share one
in-flight attempt.  ``disconnect`` bumps a generation counter; a connect
that started before it finds the counter changed and discards its result
instead of resurrecting the cleared session.  ``disconnect`` also forgets
those attempts, so a later ``connect`` never joins one.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Awaitable, Callable

import httpx

from canister_client.auth.delegated import DelegatedAuthClient, HttpLoginDriver, LoginDriver
from canister_client.auth.session import AuthProvider, Session, SessionSource
from canister_client.auth.wallet import WalletConnector, WalletEnvironment, WalletIdentity, WalletKeyDeriver
from canister_client.config.settings import Settings, validate_provider_url
from canister_client.errors import NotAuthenticatedError, ProviderUnreachableError
from canister_client.identity.keys import AnonymousIdentity, Identity
from canister_client.identity.principal import Principal
from canister_client.transport.agent import HttpAgent

logger = logging.getLogger(__name__)

AgentFactory = Callable[[Identity], HttpAgent]
AgentTeardown = Callable[[HttpAgent], Awaitable[None]]


class SessionManager:
    """Holds the current session and hands out agents bound to it."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
        login_driver: LoginDriver | None = None,
        wallet_environment: WalletEnvironment | None = None,
        key_deriver: WalletKeyDeriver | None = None,
        agent_factory: AgentFactory | None = None,
        agent_teardown: AgentTeardown | None = None,
    ) -> None:
        self._settings = settings
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=settings.call_timeout)
        self._login_driver = login_driver or HttpLoginDriver(self._http_client)
        self._wallets = WalletConnector(
            wallet_environment or WalletEnvironment(),
            poll_interval=settings.wallet.poll_interval,
            poll_timeout=settings.wallet.poll_timeout,
        )
        self._deriver = key_deriver or WalletKeyDeriver()
        self._agent_factory = agent_factory or self._default_agent_factory
        self._agent_teardown = agent_teardown

        self._delegated: DelegatedAuthClient | None = None
        self._wallet_identity: WalletIdentity | None = None
        self._agent: HttpAgent | None = None
        self._agent_identity: Identity | None = None
        self._anonymous_agent: HttpAgent | None = None
        self._inflight: dict[AuthProvider, asyncio.Future] = {}
        self._generation = 0

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- lookups ---------------------------------------------------------------

    def get_current_principal(self) -> Principal | None:
        """The winning principal, or ``None`` when unauthenticated."""
        _, identity = self._resolve_identity()
        return identity.principal if identity is not None else None

    @property
    def session(self) -> Session:
        source, identity = self._resolve_identity()
        if identity is None:
            return Session.unauthenticated()
        if isinstance(identity, WalletIdentity):
            provider = identity.provider
        else:
            provider = AuthProvider.INTERNET_IDENTITY
        return Session(
            source=source,
            principal=identity.principal,
            agent=self._agent if self._agent_identity is identity else None,
            provider=provider,
            created_at=datetime.datetime.now(datetime.UTC),
        )

    async def get_agent(self, allow_anonymous: bool = False) -> HttpAgent:
        """Return the agent for the winning identity.

        Falls back to the shared anonymous agent only when *allow_anonymous*
        is set; otherwise raises ``NotAuthenticatedError`` without touching
        the network.
        """
        _, identity = self._resolve_identity()
        if identity is not None:
            return await self._authenticated_agent(identity)
        if not allow_anonymous:
            raise NotAuthenticatedError("Agent not initialized. Please connect first.")
        return await self._get_anonymous_agent()

    async def require_auth(self) -> Principal:
        principal = self.get_current_principal()
        if principal is None:
            raise NotAuthenticatedError("User must be authenticated to perform this action")
        return principal

    # -- lifecycle -------------------------------------------------------------

    async def connect(self, provider: str | AuthProvider) -> Principal | None:
        """Establish an identity from *provider* and return its principal.

        Returns ``None`` when the federated provider is not configured, cannot
        be reached, or the user cancelled.  Raises ``ConfigError`` for a
        malformed provider URL and ``AuthError`` when the provider or wallet
        refuses.
        """
        provider = AuthProvider.parse(provider)
        attempt = self._inflight.get(provider)
        if attempt is None:
            attempt = asyncio.ensure_future(self._connect(provider, self._generation))
            self._inflight[provider] = attempt
            attempt.add_done_callback(lambda done, p=provider: self._clear_inflight(p, done))
        else:
            logger.debug("Joining in-flight %s connect", provider.value)
        return await asyncio.shield(attempt)

    async def disconnect(self) -> None:
        """Clear the session.  The anonymous agent is kept."""
        self._generation += 1
        # Attempts started before now resolve to None; later connects start fresh.
        self._inflight.clear()
        if self._delegated is not None:
            await self._delegated.logout()
        self._delegated = None
        self._wallet_identity = None
        await self._drop_agent()
        logger.info("Session cleared")

    async def aclose(self) -> None:
        await self._drop_agent()
        self._anonymous_agent = None
        if self._owns_http_client:
            await self._http_client.aclose()

    # -- private helpers -------------------------------------------------------

    def _resolve_identity(self) -> tuple[SessionSource, Identity | None]:
        wallet = self._wallet_identity
        if wallet is not None and not wallet.principal.is_anonymous:
            return SessionSource.WALLET_DERIVED, wallet

        if self._delegated is not None and self._delegated.is_authenticated:
            return SessionSource.DELEGATED, self._delegated.identity

        return SessionSource.NONE, None

    async def _connect(self, provider: AuthProvider, generation: int) -> Principal | None:
        if provider.is_wallet:
            raw_response = await self._wallets.request_accounts(provider)
            identity = self._deriver.derive_identity(raw_response, provider)
            if self._is_stale(generation, provider):
                return None
            self._wallet_identity = identity
            logger.info(
                "Connected %s wallet: address=%s, principal=%s",
                provider.value,
                identity.address,
                identity.principal,
            )
            return identity.principal

        url = self._settings.identity_provider_url
        if not url:
            logger.error(
                "Identity provider URL not configured. Deploy an identity provider "
                "locally or set identity_provider_url in the settings file.",
            )
            return None
        validate_provider_url(url)

        client = DelegatedAuthClient(url, self._login_driver)
        try:
            delegated = await client.login()
        except ProviderUnreachableError as exc:
            logger.error("%s. Check identity_provider_url in the settings file.", exc)
            return None
        if delegated is None or self._is_stale(generation, provider):
            return None
        self._delegated = client
        logger.info("Connected via %s, principal=%s", url, delegated.principal)
        return delegated.principal

    def _is_stale(self, generation: int, provider: AuthProvider) -> bool:
        if generation == self._generation:
            return False
        logger.info("Discarding %s connect result superseded by disconnect", provider.value)
        return True

    def _clear_inflight(self, provider: AuthProvider, done: asyncio.Future) -> None:
        if self._inflight.get(provider) is done:
            del self._inflight[provider]

    async def _authenticated_agent(self, identity: Identity) -> HttpAgent:
        if self._agent is not None and self._agent_identity is identity:
            return self._agent

        agent = await self._build_agent(identity)
        # The session may have changed while the root key was being fetched.
        if self._resolve_identity()[1] is identity:
            await self._drop_agent()
            self._agent = agent
            self._agent_identity = identity
        return agent

    async def _get_anonymous_agent(self) -> HttpAgent:
        if self._anonymous_agent is None:
            agent = await self._build_agent(AnonymousIdentity())
            if self._anonymous_agent is None:
                self._anonymous_agent = agent
        return self._anonymous_agent

    async def _build_agent(self, identity: Identity) -> HttpAgent:
        agent = self._agent_factory(identity)
        if self._settings.is_local:
            await agent.fetch_root_key()
        logger.debug("Built agent for principal %s", identity.principal)
        return agent

    async def _drop_agent(self) -> None:
        agent = self._agent
        self._agent = None
        self._agent_identity = None
        if agent is not None and self._agent_teardown is not None:
            await self._agent_teardown(agent)

    def _default_agent_factory(self, identity: Identity) -> HttpAgent:
        return HttpAgent(identity, self._settings.host or "", self._http_client)
