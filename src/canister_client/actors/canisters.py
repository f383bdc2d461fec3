"""Interfaces of the rewards, lending, portfolio and swap canisters.

Queries return bare values.  Updates that can fail for business reasons
return a tagged ``{"ok": ...}`` / ``{"err": reason}`` record, which the
stubs pass through unchanged (see ``canister_client.actors.results``).

The portfolio canister reads per-user state on every method and is never
bound anonymously; the other three allow anonymous reads.
"""

from __future__ import annotations

import logging

from canister_client.actors.factory import ActorFactory, CanisterStub
from canister_client.actors.interface import InterfaceDescriptor, Param, query, update
from canister_client.config.settings import Settings

logger = logging.getLogger(__name__)

_USER = Param("userId", "principal", "Principal whose state is read")

REWARDS = InterfaceDescriptor(
    name="rewards",
    methods=(
        query("getStores"),
        update(
            "trackPurchase",
            Param("storeId", "nat32", "Partner store the purchase was made at"),
            Param("amount", "nat64", "Purchase amount in the store's smallest unit"),
        ),
        query("getUserRewards", _USER),
    ),
)

LENDING = InterfaceDescriptor(
    name="lending",
    methods=(
        query("getLendingAssets"),
        update(
            "deposit",
            Param("asset", "text", "Asset symbol, e.g. ckBTC"),
            Param("amount", "nat64"),
        ),
        update(
            "withdraw",
            Param("asset", "text"),
            Param("amount", "nat64"),
            Param("address", "text", "Destination address for the withdrawal"),
        ),
        query("getUserDeposits", _USER),
        query("getCurrentAPY", Param("asset", "text")),
    ),
)

PORTFOLIO = InterfaceDescriptor(
    name="portfolio",
    methods=(
        update("getPortfolio", _USER),
        update("getBalance", _USER, Param("asset", "text")),
        update("getTotalValue", _USER),
        update("setRewardsCanister", Param("canisterId", "principal")),
        update("setLendingCanister", Param("canisterId", "principal")),
    ),
)

SWAP = InterfaceDescriptor(
    name="swap",
    methods=(
        query("getQuote", Param("poolId", "text"), Param("amountIn", "nat64")),
        update(
            "swap",
            Param("poolId", "text"),
            Param("tokenIn", "variant", "Token being sold, e.g. 'ckBTC' or {'ckBTC': None}"),
            Param("amountIn", "nat64"),
            Param("minAmountOut", "nat64", "Slippage floor; the swap fails below it"),
        ),
        query("getCKBTCBalance", _USER),
        query("getBTCAddress", _USER),
        update("updateBalance"),
        update("withdrawBTC", Param("amount", "nat64"), Param("btcAddress", "text")),
        query("getSwapHistory", _USER),
        query("getPools"),
    ),
)

CANISTER_INTERFACES: dict[str, InterfaceDescriptor] = {
    descriptor.name: descriptor for descriptor in (REWARDS, LENDING, PORTFOLIO, SWAP)
}

# Canisters whose stubs may fall back to the anonymous agent.
ANONYMOUS_READABLE = frozenset({"rewards", "lending", "swap"})


async def create_actor(factory: ActorFactory, settings: Settings, name: str) -> CanisterStub:
    """Bind canister *name* using its configured id.

    Failures are logged and re-raised unchanged.
    """
    interface = CANISTER_INTERFACES[name]
    try:
        canister_id = settings.canister_id(name)
        return await factory.bind_actor(
            canister_id, interface, allow_anonymous=name in ANONYMOUS_READABLE,
        )
    except Exception:
        logger.error("Failed to create %s actor", name)
        raise


async def create_rewards_actor(factory: ActorFactory, settings: Settings) -> CanisterStub:
    return await create_actor(factory, settings, "rewards")


async def create_lending_actor(factory: ActorFactory, settings: Settings) -> CanisterStub:
    return await create_actor(factory, settings, "lending")


async def create_portfolio_actor(factory: ActorFactory, settings: Settings) -> CanisterStub:
    return await create_actor(factory, settings, "portfolio")


async def create_swap_actor(factory: ActorFactory, settings: Settings) -> CanisterStub:
    return await create_actor(factory, settings, "swap")
