"""Client settings loaded from ``config/settings.yaml``.

The YAML file is the single declarative source for which network to talk to,
where the federated identity provider lives, and which canister ids to bind.
It is parsed with ``yaml.safe_load`` and validated by a pydantic model so a
malformed canister id is rejected at load time with the setting's name in
the message, rather than surfacing later as a confusing transport failure.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
import re
import urllib.parse
from typing import Any, Literal

import pydantic
import yaml

from canister_client.errors import ConfigError
from canister_client.identity.principal import is_valid_principal_text

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = pathlib.Path(__file__).resolve().parents[3] / "config" / "settings.yaml"

LOCAL_HOST = "http://localhost:4943"
MAINNET_HOST = "https://ic0.app"
MAINNET_IDENTITY_PROVIDER = "https://identity.ic0.app"

# Ids the local replica hands out first; used only when the setting is empty.
_LOCAL_FALLBACK_IDS: dict[str, str] = {
    "rewards": "rrkah-fqaaa-aaaaa-aaaaq-cai",
    "lending": "ryjl3-tyaaa-aaaaa-aaaba-cai",
    "portfolio": "rrkah-fqaaa-aaaaa-aaaaq-cai",
    "swap": "rrkah-fqaaa-aaaaa-aaaaq-cai",
}

# Anything shaped like a canister id (xxxxx-xxxxx-xxxxx-xxxxx-xxx) must also
# checksum as one.
_CANISTER_ID_SHAPE = re.compile(r"^[a-z0-9]{5}(-[a-z0-9]{5}){3}-[a-z0-9]{3}$")


class RateLimitSettings(pydantic.BaseModel):
    max_requests: int = pydantic.Field(gt=0)
    window: float = pydantic.Field(gt=0, description="Window length in seconds.")


class RetrySettings(pydantic.BaseModel):
    max_retries: int = pydantic.Field(default=3, ge=1)
    initial_delay: float = pydantic.Field(default=1.0, ge=0)
    max_delay: float = pydantic.Field(default=10.0, ge=0)
    backoff_multiplier: float = pydantic.Field(default=2.0, ge=1)


class WalletSettings(pydantic.BaseModel):
    poll_interval: float = pydantic.Field(default=0.1, gt=0)
    poll_timeout: float = pydantic.Field(default=1.0, ge=0)


class CanisterIds(pydantic.BaseModel):
    rewards: str = ""
    lending: str = ""
    portfolio: str = ""
    swap: str = ""

    @pydantic.field_validator("*")
    @classmethod
    def _must_be_principal(cls, value: str) -> str:
        value = value.strip()
        if value and not is_valid_principal_text(value):
            raise ValueError(f"'{value}' is not a well-formed canister id")
        return value


def _default_rate_limits() -> dict[str, RateLimitSettings]:
    return {
        "general": RateLimitSettings(max_requests=100, window=60),
        "lending": RateLimitSettings(max_requests=20, window=60),
        "swap": RateLimitSettings(max_requests=30, window=60),
        "rewards": RateLimitSettings(max_requests=50, window=60),
    }


@dataclasses.dataclass(frozen=True)
class ValidationIssue:
    variable: str
    message: str


class Settings(pydantic.BaseModel):
    """Validated client configuration.

    Attributes:
        network:               ``local`` (a development replica) or ``ic``.
        host:                  Replica URL; derived from *network* when unset.
        identity_provider_url: Federated login endpoint; ``None`` disables it.
        canister_ids:          Ids of the canisters this client binds to.
        rate_limits:           ``(max_requests, window)`` per operation class.
        rate_limit_sweep_interval: Seconds between expired-window sweeps.
        retry:                 Default retry policy for remote calls.
        call_timeout:          Seconds a caller waits for one remote call.
        wallet:                Polling for late-injected wallet extensions.
    """

    network: Literal["local", "ic"] = "local"
    host: str | None = None
    identity_provider_url: str | None = None
    canister_ids: CanisterIds = pydantic.Field(default_factory=CanisterIds)
    rate_limits: dict[str, RateLimitSettings] = pydantic.Field(default_factory=_default_rate_limits)
    rate_limit_sweep_interval: float = pydantic.Field(default=300.0, gt=0)
    retry: RetrySettings = pydantic.Field(default_factory=RetrySettings)
    call_timeout: float = pydantic.Field(default=10.0, gt=0)
    wallet: WalletSettings = pydantic.Field(default_factory=WalletSettings)

    @pydantic.model_validator(mode="after")
    def _derive_network_defaults(self) -> Settings:
        if self.host is None:
            self.host = LOCAL_HOST if self.network == "local" else MAINNET_HOST
        if self.identity_provider_url is None and self.network == "ic":
            self.identity_provider_url = MAINNET_IDENTITY_PROVIDER
        return self

    @property
    def is_local(self) -> bool:
        return self.network == "local"

    def canister_id(self, name: str) -> str:
        """Return the configured id for canister *name*.

        On the local network an unset id falls back to the replica's default
        id (with a warning).  Anywhere else an unset id is a ``ConfigError``.
        """
        variable = f"canister_ids.{name}"
        configured = getattr(self.canister_ids, name, None)
        if configured is None:
            raise ConfigError(f"Unknown canister '{name}'", variable=variable)
        if configured:
            return configured
        if self.is_local and name in _LOCAL_FALLBACK_IDS:
            logger.warning(
                "Using default %s canister id. Set %s for production.", name, variable,
            )
            return _LOCAL_FALLBACK_IDS[name]
        raise ConfigError(
            f"{name.capitalize()} canister id not configured. "
            f"Set {variable} or deploy the canister first.",
            variable=variable,
        )

    def validate_environment(self) -> list[ValidationIssue]:
        """Collect every setting that would block a production deployment."""
        issues: list[ValidationIssue] = []
        if self.network == "ic":
            for name in ("rewards", "lending", "portfolio", "swap"):
                if not getattr(self.canister_ids, name):
                    issues.append(ValidationIssue(
                        f"canister_ids.{name}",
                        f"{name.capitalize()} canister id is required for production",
                    ))
        if not self.identity_provider_url:
            issues.append(ValidationIssue(
                "identity_provider_url",
                "Identity provider URL is required for federated login",
            ))
        return issues

    def assert_environment_valid(self) -> None:
        issues = self.validate_environment()
        if issues:
            lines = "\n".join(f"  - {i.variable}: {i.message}" for i in issues)
            raise ConfigError(
                "Configuration validation failed. Please check the following settings:\n"
                f"{lines}",
                variable=issues[0].variable,
            )


def validate_provider_url(url: str) -> str:
    """Reject a provider endpoint that is syntactically unusable.

    A URL that names a canister (either as ``?canisterId=`` or as the first
    host label, as local replicas do) must name a well-formed one.
    """
    variable = "identity_provider_url"
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigError(
            f"Identity provider URL must be an http(s) URL, got {url!r}", variable=variable,
        )

    candidates = urllib.parse.parse_qs(parsed.query).get("canisterId", [])
    first_label = parsed.hostname.split(".")[0]
    if _CANISTER_ID_SHAPE.match(first_label):
        candidates.append(first_label)

    for candidate in candidates:
        if not is_valid_principal_text(candidate):
            raise ConfigError(
                f"Identity provider URL {url!r} references invalid canister id {candidate!r}",
                variable=variable,
            )
    return url


def load_settings(path: str | pathlib.Path | None = None) -> Settings:
    """Load and validate settings from YAML; a missing file yields defaults."""
    config_path = pathlib.Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file must contain a mapping: {config_path}")
    elif path is not None:
        raise ConfigError(f"Settings file not found: {config_path}")

    try:
        return Settings.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        variable = ".".join(str(part) for part in first["loc"])
        raise ConfigError(f"Invalid setting {variable}: {first['msg']}", variable=variable) from exc
