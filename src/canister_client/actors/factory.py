"""Actor factory: binds canister interfaces to the session's agent.

Pattern: Factory
-----------------
The factory encapsulates the steps needed to get a callable stub:

  1. Reject an obviously malformed canister id (no network access).
  2. Ask the ``SessionManager`` for an agent: the authenticated one when a
     session exists, the anonymous one only when the caller allows it.
  3. Bundle id, interface and agent into a fresh ``ActorBinding``.

Bindings are never cached, so a stub built after an identity change always
carries the new agent.  Stubs do not interpret results: an update's
``{"err": ...}`` comes back as data, exactly as the canister sent it.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Awaitable, Callable

from canister_client.actors.interface import InterfaceDescriptor, MethodSpec
from canister_client.auth.manager import SessionManager
from canister_client.errors import ConfigError
from canister_client.identity.principal import InvalidPrincipalError, Principal
from canister_client.transport.agent import HttpAgent

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ActorBinding:
    canister_id: str
    interface: InterfaceDescriptor
    agent: HttpAgent


class CanisterStub:
    """Typed access to one canister.  Methods are coroutine functions."""

    def __init__(self, binding: ActorBinding) -> None:
        self._binding = binding

    @property
    def binding(self) -> ActorBinding:
        return self._binding

    def __getattr__(self, name: str) -> Callable[..., Awaitable[Any]]:
        spec = self._binding.interface.method(name)
        if spec is None:
            raise AttributeError(
                f"Canister interface '{self._binding.interface.name}' has no method '{name}'"
            )

        async def call(*args: Any, **kwargs: Any) -> Any:
            return await self._invoke(spec, args, kwargs)

        call.__name__ = name
        return call

    def __dir__(self) -> list[str]:
        return sorted(set(super().__dir__()) | set(self._binding.interface.method_names))

    async def _invoke(self, spec: MethodSpec, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        arguments = spec.prepare_args(args, kwargs)
        agent = self._binding.agent
        if spec.is_query:
            return await agent.query(self._binding.canister_id, spec.name, arguments)
        return await agent.update(self._binding.canister_id, spec.name, arguments)

    def __repr__(self) -> str:
        return (
            f"CanisterStub({self._binding.interface.name}@{self._binding.canister_id}, "
            f"principal={self._binding.agent.principal})"
        )


class ActorFactory:
    def __init__(self, sessions: SessionManager) -> None:
        self._sessions = sessions

    async def bind_actor(
        self,
        canister_id: str,
        interface: InterfaceDescriptor,
        allow_anonymous: bool = False,
    ) -> CanisterStub:
        """Build a stub for *canister_id* using the current session's agent.

        Raises ``ConfigError`` for a malformed id and ``NotAuthenticatedError``
        when no session exists and *allow_anonymous* is false.
        """
        # Step 1: Syntactic check of the id.
        try:
            Principal.from_text(canister_id)
        except InvalidPrincipalError as exc:
            raise ConfigError(
                f"Invalid canister id for '{interface.name}': {canister_id!r}",
                variable=f"canister_ids.{interface.name}",
            ) from exc

        # Step 2: Authenticated agent if there is one, anonymous if allowed.
        agent = await self._sessions.get_agent(allow_anonymous=allow_anonymous)

        # Step 3: Fresh binding every time.
        binding = ActorBinding(canister_id=canister_id, interface=interface, agent=agent)
        logger.debug(
            "Bound %s canister %s to principal %s",
            interface.name,
            canister_id,
            agent.principal,
        )
        return CanisterStub(binding)
