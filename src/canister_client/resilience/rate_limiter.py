"""Windowed admission control for state-changing canister calls.

Each operation class (``lending``, ``swap``, ``rewards``, ``general``, ...)
owns an independent ``(max_requests, window)`` pair and an independent key
space, so exhausting one class never affects another for the same subject.

A window is created lazily on the first request for a key with
``count = 1`` and ``reset_time = now + window``.  Once ``reset_time`` has
passed the window is treated as absent and replaced, never incremented.
Expired windows are dropped by ``sweep``, either on demand or from the
background task managed by ``start_sweeper`` and ``stop_sweeper``; the
sweep interval is unrelated to any window length.  ``CanisterGateway``
starts the task on ``__aenter__`` and cancels it on exit.

All mutation happens synchronously inside ``is_allowed``, so a single check
is atomic with respect to other coroutines.  A check made before an
``await`` says nothing about the state after it.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import functools
import logging
import math
import time
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from canister_client.config.settings import RateLimitSettings, Settings
from canister_client.errors import ConfigError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SWEEP_INTERVAL = 300.0


@dataclasses.dataclass
class RateLimitWindow:
    count: int
    reset_time: float


@dataclasses.dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    reset_in: float


class SlidingWindow:
    """Counts requests per key for one operation class."""

    def __init__(
        self,
        max_requests: int,
        window: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0 or window <= 0:
            raise ValueError("max_requests and window must both be positive")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        entry = self._windows.get(key)

        if entry is None or now >= entry.reset_time:
            self._windows[key] = RateLimitWindow(count=1, reset_time=now + self.window)
            return True

        if entry.count < self.max_requests:
            entry.count += 1
            return True

        return False

    def remaining(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None:
            return self.max_requests
        return max(0, self.max_requests - entry.count)

    def reset_in(self, key: str) -> float:
        """Seconds until *key*'s window resets (0 when there is none)."""
        entry = self._live_entry(key)
        if entry is None:
            return 0.0
        return max(0.0, entry.reset_time - self._clock())

    def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._windows.items() if now >= entry.reset_time]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)

    def _live_entry(self, key: str) -> RateLimitWindow | None:
        entry = self._windows.get(key)
        if entry is None or self._clock() >= entry.reset_time:
            return None
        return entry


class RateLimiter:
    """Admission control keyed by ``(operation_class, subject_key)``."""

    def __init__(
        self,
        limits: Mapping[str, RateLimitSettings],
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._sweeper: asyncio.Task | None = None
        self._windows: dict[str, SlidingWindow] = {
            name: SlidingWindow(limit.max_requests, limit.window, clock)
            for name, limit in limits.items()
        }

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> RateLimiter:
        return cls(settings.rate_limits, clock=clock, sweep_interval=settings.rate_limit_sweep_interval)

    @property
    def operation_classes(self) -> list[str]:
        return list(self._windows)

    def is_allowed(self, operation_class: str, subject_key: str) -> bool:
        return self._window(operation_class).is_allowed(subject_key)

    def check(self, operation_class: str, subject_key: str) -> None:
        """Admit one request or raise ``RateLimitError`` with a retry hint."""
        window = self._window(operation_class)
        if window.is_allowed(subject_key):
            return
        retry_after = math.ceil(window.reset_in(subject_key))
        logger.warning(
            "Rate limit exceeded: class=%s, subject=%s, retry_after=%ds",
            operation_class,
            subject_key,
            retry_after,
        )
        raise RateLimitError(operation_class, retry_after)

    def remaining(self, operation_class: str, subject_key: str) -> int:
        return self._window(operation_class).remaining(subject_key)

    def reset_in(self, operation_class: str, subject_key: str) -> float:
        return self._window(operation_class).reset_in(subject_key)

    def status(self, operation_class: str, subject_key: str) -> RateLimitStatus:
        window = self._window(operation_class)
        return RateLimitStatus(
            remaining=window.remaining(subject_key),
            reset_in=window.reset_in(subject_key),
        )

    def reset(self, operation_class: str, subject_key: str) -> None:
        self._window(operation_class).reset(subject_key)

    def sweep(self) -> int:
        removed = sum(window.sweep() for window in self._windows.values())
        if removed:
            logger.debug("Swept %d expired rate-limit windows", removed)
        return removed

    async def run_sweeper(self) -> None:
        """Sweep expired windows forever; run it as a background task."""
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start_sweeper(self) -> asyncio.Task:
        """Start the background sweep on the running loop (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self.run_sweeper(), name="rate-limit-sweeper",
            )
            logger.debug("Started rate-limit sweeper, interval=%.0fs", self._sweep_interval)
        return self._sweeper

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def rate_limited(
        self,
        operation_class: str,
        key_func: Callable[..., str],
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """Decorate a coroutine function so each call is admitted first.

        *key_func* receives the call's arguments and returns the subject key.
        The check happens before the coroutine starts, so a denial never
        costs a round trip.
        """
        self._window(operation_class)

        def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> T:
                self.check(operation_class, key_func(*args, **kwargs))
                return await fn(*args, **kwargs)

            return wrapper

        return decorator

    def _window(self, operation_class: str) -> SlidingWindow:
        window = self._windows.get(operation_class)
        if window is None:
            raise ConfigError(
                f"No rate limit configured for operation class '{operation_class}'",
                variable=f"rate_limits.{operation_class}",
            )
        return window
