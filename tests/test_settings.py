"""Tests for settings loading and environment validation."""

from __future__ import annotations

import logging
import pathlib

import pytest

from canister_client.config.settings import (
    LOCAL_HOST,
    MAINNET_HOST,
    MAINNET_IDENTITY_PROVIDER,
    Settings,
    load_settings,
    validate_provider_url,
)
from canister_client.errors import ConfigError

from conftest import LENDING_ID, PORTFOLIO_ID, REWARDS_ID, SWAP_ID


def _write(tmp_path: pathlib.Path, text: str) -> pathlib.Path:
    path = tmp_path / "settings.yaml"
    path.write_text(text)
    return path


class TestLoadSettings:
    def test_defaults_for_local(self, tmp_path: pathlib.Path) -> None:
        settings = load_settings(_write(tmp_path, "network: local\n"))
        assert settings.host == LOCAL_HOST
        assert settings.identity_provider_url is None
        assert settings.retry.max_retries == 3
        assert settings.rate_limits["lending"].max_requests == 20
        assert settings.rate_limits["swap"].max_requests == 30
        assert settings.rate_limits["rewards"].max_requests == 50
        assert settings.rate_limits["general"].max_requests == 100

    def test_mainnet_derives_host_and_provider(self, tmp_path: pathlib.Path) -> None:
        settings = load_settings(_write(tmp_path, "network: ic\n"))
        assert settings.host == MAINNET_HOST
        assert settings.identity_provider_url == MAINNET_IDENTITY_PROVIDER

    def test_malformed_canister_id_names_setting(self, tmp_path: pathlib.Path) -> None:
        path = _write(tmp_path, "canister_ids:\n  rewards: not-a-canister\n")
        with pytest.raises(ConfigError) as exc_info:
            load_settings(path)
        assert exc_info.value.variable == "canister_ids.rewards"

    def test_unknown_network_rejected(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(ConfigError) as exc_info:
            load_settings(_write(tmp_path, "network: testnet\n"))
        assert exc_info.value.variable == "network"

    def test_missing_explicit_file(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "absent.yaml")

    def test_non_mapping_file(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(_write(tmp_path, "- just\n- a list\n"))

    def test_shipped_settings_file_loads(self) -> None:
        path = pathlib.Path(__file__).resolve().parents[1] / "config" / "settings.yaml"
        settings = load_settings(path)
        assert settings.is_local
        assert set(settings.canister_ids.model_dump()) == {"rewards", "lending", "portfolio", "swap"}


class TestCanisterId:
    def test_configured_id_returned(self, settings: Settings) -> None:
        assert settings.canister_id("lending") == LENDING_ID

    def test_local_fallback_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        settings = Settings(network="local")
        with caplog.at_level(logging.WARNING):
            assert settings.canister_id("lending") == "ryjl3-tyaaa-aaaaa-aaaba-cai"
        assert "canister_ids.lending" in caplog.text

    def test_mainnet_requires_id(self) -> None:
        settings = Settings(network="ic")
        with pytest.raises(ConfigError) as exc_info:
            settings.canister_id("swap")
        assert exc_info.value.variable == "canister_ids.swap"

    def test_unknown_canister(self, settings: Settings) -> None:
        with pytest.raises(ConfigError, match="Unknown canister"):
            settings.canister_id("governance")


class TestValidateEnvironment:
    def test_complete_mainnet_config_is_valid(self) -> None:
        settings = Settings(
            network="ic",
            canister_ids={
                "rewards": REWARDS_ID,
                "lending": LENDING_ID,
                "portfolio": PORTFOLIO_ID,
                "swap": SWAP_ID,
            },
        )
        assert settings.validate_environment() == []
        settings.assert_environment_valid()

    def test_lists_every_missing_setting(self) -> None:
        settings = Settings(network="ic")
        variables = [issue.variable for issue in settings.validate_environment()]
        assert variables == [
            "canister_ids.rewards",
            "canister_ids.lending",
            "canister_ids.portfolio",
            "canister_ids.swap",
        ]

    def test_assert_raises_with_all_issues(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            Settings(network="ic").assert_environment_valid()
        assert "canister_ids.portfolio" in str(exc_info.value)

    def test_local_without_provider_is_flagged(self) -> None:
        issues = Settings(network="local").validate_environment()
        assert [issue.variable for issue in issues] == ["identity_provider_url"]


class TestValidateProviderUrl:
    @pytest.mark.parametrize("url", [
        "https://identity.ic0.app",
        "http://rdmx6-jaaaa-aaaaa-aaadq-cai.localhost:4943",
        "http://localhost:4943/?canisterId=rdmx6-jaaaa-aaaaa-aaadq-cai",
    ])
    def test_accepts(self, url: str) -> None:
        assert validate_provider_url(url) == url

    @pytest.mark.parametrize("url", [
        "identity.ic0.app",
        "ftp://identity.ic0.app",
        "http://rdmx6-jaaaa-aaaaa-aaadq-caa.localhost:4943",
        "http://localhost:4943/?canisterId=bogus",
    ])
    def test_rejects(self, url: str) -> None:
        with pytest.raises(ConfigError) as exc_info:
            validate_provider_url(url)
        assert exc_info.value.variable == "identity_provider_url"
