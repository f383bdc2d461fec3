"""Tests for wallet address extraction, key derivation and detection."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from canister_client.auth.session import AuthProvider
from canister_client.auth.wallet import (
    Address,
    ExtractionFailed,
    WalletConnector,
    WalletEnvironment,
    WalletKeyDeriver,
    extract_address,
)
from canister_client.errors import AuthError, ExtractionError, WalletLockedError, WalletNotInstalledError

from conftest import AccountsWallet

ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"


class TestExtractAddress:
    @pytest.mark.parametrize("response", [
        ADDRESS,
        [ADDRESS, "bc1qsecond"],
        {"address": ADDRESS},
        {"accounts": [ADDRESS]},
        SimpleNamespace(address=ADDRESS),
    ])
    def test_supported_shapes(self, response: object) -> None:
        assert extract_address(response) == Address(ADDRESS)

    def test_nested_account_record(self) -> None:
        assert extract_address({"accounts": [{"address": ADDRESS}]}) == Address(ADDRESS)

    @pytest.mark.parametrize("response", [
        [],
        {},
        {"accounts": []},
        "   ",
        None,
        42,
    ])
    def test_unusable_responses(self, response: object) -> None:
        assert isinstance(extract_address(response), ExtractionFailed)


class TestWalletKeyDeriver:
    def test_same_address_same_principal(self) -> None:
        deriver = WalletKeyDeriver()
        first = deriver.derive_identity([ADDRESS], AuthProvider.UNISAT)
        second = deriver.derive_identity({"address": ADDRESS}, AuthProvider.WIZZ)
        assert first.principal == second.principal
        assert not first.principal.is_anonymous

    def test_principal_is_pinned_for_known_address(self) -> None:
        identity = WalletKeyDeriver().derive_identity(ADDRESS)
        assert identity.principal.to_text() == (
            "3tvqo-p4ltw-fezwm-pyatr-5xmow-ukfiv-tf3ju-5c7v4-sh5ti-tsqmp-yqe"
        )
        assert identity.public_key.hex() == (
            "302a300506032b6570032100"
            "880dd15fd3141b01447576773d8e153604a2b2796796eb19a6602b7a8e9ece01"
        )

    def test_different_addresses_differ(self) -> None:
        deriver = WalletKeyDeriver()
        assert (
            deriver.derive_identity(ADDRESS).principal
            != deriver.derive_identity("bc1qother").principal
        )

    def test_identity_carries_address_and_provider(self) -> None:
        identity = WalletKeyDeriver().derive_identity(ADDRESS, AuthProvider.XVERSE)
        assert identity.address == ADDRESS
        assert identity.provider is AuthProvider.XVERSE

    def test_extraction_failure_raises(self) -> None:
        with pytest.raises(ExtractionError) as exc_info:
            WalletKeyDeriver().derive_identity({"accounts": []}, AuthProvider.WIZZ)
        assert exc_info.value.provider == "wizz"


class TestAuthProvider:
    @pytest.mark.parametrize("value, expected", [
        ("wizz", AuthProvider.WIZZ),
        ("Unisat", AuthProvider.UNISAT),
        ("BitcoinProvider", AuthProvider.XVERSE),
        ("internet-identity", AuthProvider.INTERNET_IDENTITY),
    ])
    def test_parse(self, value: str, expected: AuthProvider) -> None:
        assert AuthProvider.parse(value) is expected

    def test_unknown_provider(self) -> None:
        with pytest.raises(AuthError, match="Unsupported wallet provider"):
            AuthProvider.parse("metamask")


class TestWalletConnector:
    @pytest.mark.asyncio
    async def test_missing_extension(self) -> None:
        connector = WalletConnector(WalletEnvironment(), poll_interval=0.01, poll_timeout=0.03)
        with pytest.raises(WalletNotInstalledError, match="Please install the Wizz wallet extension"):
            await connector.detect(AuthProvider.WIZZ)

    @pytest.mark.asyncio
    async def test_waits_for_late_injection(self) -> None:
        wallet = AccountsWallet([ADDRESS])
        environment = MagicMock(spec=WalletEnvironment)
        environment.resolve.side_effect = [None, None, wallet]
        connector = WalletConnector(environment, poll_interval=0.001, poll_timeout=1.0)

        assert await connector.detect(AuthProvider.UNISAT) is wallet
        assert environment.resolve.call_count == 3

    @pytest.mark.asyncio
    async def test_request_accounts(self) -> None:
        wallet = AccountsWallet([ADDRESS])
        connector = WalletConnector(WalletEnvironment({"unisat": wallet}))
        assert await connector.request_accounts(AuthProvider.UNISAT) == [ADDRESS]
        assert wallet.calls == 1

    @pytest.mark.asyncio
    async def test_request_method_fallback(self) -> None:
        class RequestOnly:
            def __init__(self) -> None:
                self.payloads: list[dict] = []

            def request(self, payload: dict) -> dict:
                self.payloads.append(payload)
                return {"accounts": [ADDRESS]}

        wallet = RequestOnly()
        connector = WalletConnector(WalletEnvironment({"wizz": wallet}))

        assert await connector.request_accounts(AuthProvider.WIZZ) == {"accounts": [ADDRESS]}
        assert wallet.payloads == [{"method": "requestAccounts"}]

    @pytest.mark.asyncio
    async def test_xverse_provider_class_is_instantiated(self) -> None:
        class BitcoinProvider:
            async def requestAccounts(self) -> list[str]:
                return [ADDRESS]

        environment = WalletEnvironment({"XverseProviders": {"BitcoinProvider": BitcoinProvider}})
        connector = WalletConnector(environment)
        assert await connector.request_accounts(AuthProvider.XVERSE) == [ADDRESS]

    @pytest.mark.asyncio
    async def test_locked_wallet(self) -> None:
        class Locked:
            async def requestAccounts(self) -> list[str]:
                raise RuntimeError("User rejected the request")

        connector = WalletConnector(WalletEnvironment({"unisat": Locked()}))
        with pytest.raises(WalletLockedError, match="unlocked"):
            await connector.request_accounts(AuthProvider.UNISAT)

    @pytest.mark.asyncio
    async def test_extension_without_connect_method(self) -> None:
        connector = WalletConnector(WalletEnvironment({"wizz": object()}))
        with pytest.raises(AuthError, match="no supported connect method"):
            await connector.request_accounts(AuthProvider.WIZZ)
