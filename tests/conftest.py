"""Shared fixtures for tests."""

from __future__ import annotations

import asyncio
import time
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from canister_client.auth.delegated import AuthorizationRequest
from canister_client.auth.manager import SessionManager
from canister_client.auth.wallet import WalletEnvironment
from canister_client.config.settings import Settings
from canister_client.identity.keys import Delegation, DelegationChain, Ed25519Identity, Identity
from canister_client.transport.agent import HttpAgent

REWARDS_ID = "rrkah-fqaaa-aaaaa-aaaaq-cai"
LENDING_ID = "ryjl3-tyaaa-aaaaa-aaaba-cai"
PORTFOLIO_ID = "r7inp-6aaaa-aaaaa-aaabq-cai"
SWAP_ID = "rkp4c-7iaaa-aaaaa-aaaca-cai"
PROVIDER_URL = "https://identity.example.org"

HOUR_NS = 3600 * 1_000_000_000


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLoginDriver:
    """Login driver that answers with a chain for a fixed user key.

    Set ``gate`` to an ``asyncio.Event`` to hold ``authorize`` until it is set,
    or ``error`` to make it raise.
    """

    def __init__(self, user_key: Ed25519Identity | None = None) -> None:
        self.user_key = user_key or Ed25519Identity.from_seed(b"\x01" * 32)
        self.requests: list[AuthorizationRequest] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None
        self.expiration_ns = time.time_ns() + HOUR_NS

    async def authorize(self, request: AuthorizationRequest) -> DelegationChain:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return make_chain(self.user_key, request.session_public_key, self.expiration_ns)


class AccountsWallet:
    """Minimal wallet extension exposing ``requestAccounts``."""

    def __init__(self, response: Any) -> None:
        self.response = response
        self.calls = 0

    async def requestAccounts(self) -> Any:
        self.calls += 1
        return self.response


def make_chain(user_key: Ed25519Identity, session_public_key: bytes, expiration_ns: int) -> DelegationChain:
    delegation = Delegation(
        pubkey=session_public_key,
        expiration=expiration_ns,
        signature=user_key.sign(session_public_key + expiration_ns.to_bytes(8, "big")),
    )
    return DelegationChain(public_key=user_key.public_key, delegations=(delegation,))


def make_agent(identity: Identity) -> MagicMock:
    agent = MagicMock(spec=HttpAgent)
    agent.identity = identity
    agent.principal = identity.principal
    agent.fetch_root_key = AsyncMock(return_value=b"\x00")
    agent.query = AsyncMock(return_value=None)
    agent.update = AsyncMock(return_value=None)
    return agent


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        network="local",
        identity_provider_url=PROVIDER_URL,
        canister_ids={
            "rewards": REWARDS_ID,
            "lending": LENDING_ID,
            "portfolio": PORTFOLIO_ID,
            "swap": SWAP_ID,
        },
        wallet={"poll_interval": 0.01, "poll_timeout": 0.05},
    )


@pytest.fixture
def login_driver() -> FakeLoginDriver:
    return FakeLoginDriver()


@pytest.fixture
def wallet_environment() -> WalletEnvironment:
    return WalletEnvironment()


@pytest.fixture
def built_agents() -> list[MagicMock]:
    return []


@pytest_asyncio.fixture
async def session_manager(
    settings: Settings,
    login_driver: FakeLoginDriver,
    wallet_environment: WalletEnvironment,
    built_agents: list[MagicMock],
):
    def agent_factory(identity: Identity) -> MagicMock:
        agent = make_agent(identity)
        built_agents.append(agent)
        return agent

    manager = SessionManager(
        settings,
        login_driver=login_driver,
        wallet_environment=wallet_environment,
        agent_factory=agent_factory,
    )
    async with manager:
        yield manager
