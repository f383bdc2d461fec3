"""Tests for interface descriptors and argument validation."""

from __future__ import annotations

import pytest

from canister_client.actors.canisters import LENDING, PORTFOLIO, SWAP
from canister_client.actors.interface import MethodMode, Param
from canister_client.errors import InvalidArgumentError
from canister_client.identity.principal import Principal


class TestPrepareArgs:
    def test_positional_and_keyword(self) -> None:
        spec = LENDING.method("withdraw")
        assert spec.prepare_args(["ckBTC"], {"amount": 10, "address": "bc1q"}) == ["ckBTC", 10, "bc1q"]

    def test_variant_tag_shorthand(self) -> None:
        spec = SWAP.method("swap")
        assert spec.prepare_args(["pool-1", "ckBTC", 100, 90], {}) == ["pool-1", {"ckBTC": None}, 100, 90]

    def test_principal_argument(self) -> None:
        spec = PORTFOLIO.method("setRewardsCanister")
        canister = Principal.from_text("rrkah-fqaaa-aaaaa-aaaaq-cai")
        assert spec.prepare_args([canister], {}) == ["rrkah-fqaaa-aaaaa-aaaaq-cai"]

    @pytest.mark.parametrize("args, kwargs", [
        (["ckBTC", 2**64, "bc1q"], {}),
        (["ckBTC", -1, "bc1q"], {}),
        (["ckBTC", 10], {}),
        (["ckBTC", 10, "bc1q", "extra"], {}),
        (["ckBTC", 10, "bc1q"], {"memo": "x"}),
        (["ckBTC", 10], {"amount": 11, "address": "bc1q"}),
    ])
    def test_rejected(self, args: list, kwargs: dict) -> None:
        with pytest.raises(InvalidArgumentError):
            LENDING.method("withdraw").prepare_args(args, kwargs)

    def test_bad_principal(self) -> None:
        with pytest.raises(InvalidArgumentError):
            PORTFOLIO.method("getPortfolio").prepare_args(["not-a-principal"], {})

    def test_variant_needs_one_tag(self) -> None:
        with pytest.raises(InvalidArgumentError):
            SWAP.method("swap").prepare_args(["pool-1", {"ckBTC": None, "ICP": None}, 100, 90], {})


class TestDescriptors:
    def test_modes(self) -> None:
        assert LENDING.method("getCurrentAPY").mode is MethodMode.QUERY
        assert LENDING.method("deposit").mode is MethodMode.UPDATE
        assert LENDING.method("borrow") is None

    def test_unknown_param_type(self) -> None:
        with pytest.raises(ValueError, match="Unsupported parameter type"):
            Param("amount", "decimal")
