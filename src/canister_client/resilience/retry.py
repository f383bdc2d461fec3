"""Retry-with-backoff and timeout wrappers for remote calls.

Pattern: Classify Once, Retry Only Transport Failures
------------------------------------------------------
A failed attempt is classified exactly once, here.  Errors raised by this
package carry an ``ErrorKind`` and are retried only when the kind is in the
policy's retryable set (network, timeout, connection, transient, throttled).
Foreign exceptions carry no kind; for those the executor falls back to a
fixed message vocabulary plus any caller-supplied patterns.  Caller patterns
also apply to ``REJECTED`` errors, so a caller can opt a specific remote
rejection (for example "canister busy") into retry.

Everything else propagates on first occurrence, unchanged: same object,
same type, same message.  A local rate-limit denial and a remote ``{err}``
result are never retried.

``retry_with_timeout`` races the retry loop against a timer.  The timer only
abandons the *waiter*: the transport has no cancellation primitive, so the
in-flight call keeps running in the background and its outcome is dropped.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from canister_client.config.settings import RetrySettings
from canister_client.errors import RETRYABLE_KINDS, CallTimeoutError, ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "network",
    "timeout",
    "connection",
    "transient",
    "system_unknown",
    "system_transient",
    "temporarily unavailable",
    "rate limit",
    "too many requests",
)

_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    httpx.TransportError,
)

# Strong references to calls whose waiter timed out, so they are not
# garbage-collected mid-flight.
_abandoned_calls: set[asyncio.Future] = set()


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """Immutable per-call retry configuration.

    Attributes:
        max_retries:        Total attempts, including the first one.
        initial_delay:      Seconds to wait after the first failure.
        max_delay:          Upper bound on any single wait, in seconds.
        backoff_multiplier: Growth factor between consecutive waits.
        retryable_patterns: Extra message fragments (case-insensitive) that
                            make an untagged exception, or a ``REJECTED``
                            one, retryable.
        retryable_kinds:    Error kinds eligible for retry.
        on_retry:           Called with ``(attempt, error)`` before each wait.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_patterns: tuple[str, ...] = ()
    retryable_kinds: frozenset[ErrorKind] = RETRYABLE_KINDS
    on_retry: Callable[[int, Exception], None] | None = None

    @classmethod
    def from_settings(cls, settings: RetrySettings, **overrides) -> RetryPolicy:
        values = settings.model_dump()
        values.update(overrides)
        return cls(**values)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        delay = self.initial_delay * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        kind = getattr(error, "kind", None)
        if isinstance(kind, ErrorKind):
            if kind in self.retryable_kinds:
                return True
            # A remote rejection may still match a caller-supplied pattern.
            return kind is ErrorKind.REJECTED and _matches(error, self.retryable_patterns)
        if isinstance(error, _RETRYABLE_TYPES):
            return True
        return _matches(error, DEFAULT_RETRYABLE_PATTERNS + self.retryable_patterns)


def _matches(error: BaseException, patterns: tuple[str, ...]) -> bool:
    message = str(error).lower()
    return any(pattern.lower() in message for pattern in patterns)


async def retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """Await ``fn()`` until it succeeds, fails non-retryably, or runs out of attempts.

    The last error is re-raised as-is.
    """
    if policy is None:
        policy = RetryPolicy()

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_retries or not policy.is_retryable(exc):
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                "Retry attempt %d/%d after %.2fs: %s",
                attempt,
                policy.max_retries,
                delay,
                exc,
            )
            if policy.on_retry is not None:
                policy.on_retry(attempt, exc)

            await asyncio.sleep(delay)
            attempt += 1


async def retry_with_timeout(
    fn: Callable[[], Awaitable[T]],
    timeout: float,
    policy: RetryPolicy | None = None,
) -> T:
    """Like ``retry`` but gives up waiting after *timeout* seconds.

    Raises ``CallTimeoutError`` when the timer wins.  Errors from the retry
    loop itself (including timeout-like ones raised by *fn*) propagate
    unchanged.
    """
    task = asyncio.ensure_future(retry(fn, policy))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        _abandon(task)
        raise

    if task in done:
        return task.result()

    _abandon(task)
    raise CallTimeoutError(timeout)


def _abandon(task: asyncio.Future) -> None:
    _abandoned_calls.add(task)
    task.add_done_callback(_discard_abandoned)


def _discard_abandoned(task: asyncio.Future) -> None:
    _abandoned_calls.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned call finished with error: %r", exc)
    else:
        logger.debug("Abandoned call finished; result discarded")
