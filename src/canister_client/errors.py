"""Error taxonomy shared by every layer of the client.

Pattern: Classified Failures
-----------------------------
Each failure carries an ``ErrorKind`` tag attached where it is raised.  The
retry executor decides eligibility by comparing kinds, not by reading
messages, so rewording an error never changes whether it is retried.

  - ``ConfigError``: bad or missing provider or canister identifier.
  - ``AuthError``: login rejected, wallet locked or missing.
  - ``TransportError``: network-class failures; the only retryable family.
  - ``RateLimitError``: local admission control said no; never retried.
  - ``ApplicationError``: a remote ``{err}`` result, raised only when a
    caller explicitly unwraps one.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    CONFIG = "config"
    AUTH = "auth"
    NOT_AUTHENTICATED = "not_authenticated"
    WALLET_NOT_INSTALLED = "wallet_not_installed"
    WALLET_LOCKED = "wallet_locked"
    EXTRACTION = "extraction"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    TRANSIENT = "transient"
    THROTTLED = "throttled"
    REJECTED = "rejected"
    RATE_LIMITED = "rate_limited"
    INVALID_ARGUMENT = "invalid_argument"
    APPLICATION = "application"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.CONNECTION,
    ErrorKind.TRANSIENT,
    ErrorKind.THROTTLED,
})


class CanisterClientError(Exception):
    """Base class for every error raised by this package."""

    kind: ErrorKind = ErrorKind.REJECTED

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ConfigError(CanisterClientError):
    """Raised when a provider endpoint or canister identifier is unusable.

    ``variable`` names the setting the user has to fix, when known.
    """

    kind = ErrorKind.CONFIG

    def __init__(self, message: str, *, variable: str | None = None) -> None:
        super().__init__(message)
        self.variable = variable


class AuthError(CanisterClientError):
    """Raised when an identity source refuses to produce an identity."""

    kind = ErrorKind.AUTH

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message, kind=kind)
        self.provider = provider


class NotAuthenticatedError(AuthError):
    kind = ErrorKind.NOT_AUTHENTICATED


class ProviderUnreachableError(AuthError):
    """The federated identity provider could not be reached at its configured URL."""


class WalletNotInstalledError(AuthError):
    kind = ErrorKind.WALLET_NOT_INSTALLED


class WalletLockedError(AuthError):
    kind = ErrorKind.WALLET_LOCKED


class ExtractionError(AuthError):
    """The wallet answered, but no address could be found in the response."""

    kind = ErrorKind.EXTRACTION


class TransportError(CanisterClientError):
    """A request did not complete at the transport level.

    The default kind is ``NETWORK``; callers pass a more specific kind where
    the failure is known (``TIMEOUT``, ``THROTTLED``, ``REJECTED``, ...).
    """

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, kind=kind)
        self.status_code = status_code


class CallTimeoutError(TransportError, TimeoutError):
    """The caller stopped waiting; the underlying call may still be running."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Operation timed out after {timeout:g}s")
        self.timeout = timeout


class RateLimitError(CanisterClientError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, operation_class: str, retry_after: int) -> None:
        super().__init__(
            f"Rate limit exceeded for '{operation_class}' operations. "
            f"Please try again in {retry_after} seconds."
        )
        self.operation_class = operation_class
        self.retry_after = retry_after


class ApplicationError(CanisterClientError):
    """A canister rejected the request with its own ``{err}`` reason."""

    kind = ErrorKind.APPLICATION

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class InvalidArgumentError(CanisterClientError, ValueError):
    """Arguments did not match the method's interface; nothing was sent."""

    kind = ErrorKind.INVALID_ARGUMENT
