"""One entry point for admitted, retried, time-bounded canister calls.

Order of operations for ``CanisterGateway.call``:

  1. Admission: the rate limiter is charged for ``(operation_class,
     subject)`` where the subject is the caller's principal text, or
     ``anonymous``.  A denial raises ``RateLimitError`` before any I/O.
  2. Binding: a fresh stub is bound to the session's current agent.
  3. Execution: the method runs under ``retry_with_timeout``.

The reply is returned exactly as the canister sent it.

Use the gateway as an async context manager: entering it starts the rate
limiter's background sweep of expired windows and leaving it cancels the
sweep.
"""

from __future__ import annotations

import logging
from typing import Any

from canister_client.actors.canisters import ANONYMOUS_READABLE, CANISTER_INTERFACES
from canister_client.actors.factory import ActorFactory
from canister_client.auth.manager import SessionManager
from canister_client.config.settings import Settings
from canister_client.errors import ConfigError
from canister_client.resilience.rate_limiter import RateLimiter
from canister_client.resilience.retry import RetryPolicy, retry_with_timeout

logger = logging.getLogger(__name__)

ANONYMOUS_SUBJECT = "anonymous"


class CanisterGateway:
    def __init__(
        self,
        settings: Settings,
        sessions: SessionManager,
        factory: ActorFactory | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self._settings = settings
        self._sessions = sessions
        self._factory = factory or ActorFactory(sessions)
        self._limiter = limiter or RateLimiter.from_settings(settings)

    async def __aenter__(self) -> CanisterGateway:
        self._limiter.start_sweeper()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._limiter.stop_sweeper()

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    def subject(self) -> str:
        principal = self._sessions.get_current_principal()
        return principal.to_text() if principal is not None else ANONYMOUS_SUBJECT

    async def call(
        self,
        canister: str,
        method: str,
        *args: Any,
        operation_class: str = "general",
        allow_anonymous: bool | None = None,
        policy: RetryPolicy | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        """Call ``canister.method(*args, **kwargs)`` and return the raw reply.

        *allow_anonymous* defaults to whether the canister permits anonymous
        reads.  *policy* and *timeout* default to the configured retry
        settings and ``call_timeout``.
        """
        interface = CANISTER_INTERFACES.get(canister)
        if interface is None:
            raise ConfigError(
                f"Unknown canister '{canister}'. Known canisters: {', '.join(sorted(CANISTER_INTERFACES))}",
                variable="canister_ids",
            )
        if interface.method(method) is None:
            raise ConfigError(f"Canister '{canister}' has no method '{method}'")

        self._limiter.check(operation_class, self.subject())

        if allow_anonymous is None:
            allow_anonymous = canister in ANONYMOUS_READABLE
        stub = await self._factory.bind_actor(
            self._settings.canister_id(canister), interface, allow_anonymous=allow_anonymous,
        )
        bound = getattr(stub, method)

        async def attempt() -> Any:
            return await bound(*args, **kwargs)

        if policy is None:
            policy = RetryPolicy.from_settings(self._settings.retry)
        if timeout is None:
            timeout = self._settings.call_timeout

        logger.debug("Calling %s.%s as %s", canister, method, stub.binding.agent.principal)
        return await retry_with_timeout(attempt, timeout, policy)
