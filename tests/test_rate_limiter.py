"""Tests for windowed admission control."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from canister_client.config.settings import RateLimitSettings, Settings
from canister_client.errors import ConfigError, RateLimitError
from canister_client.resilience.rate_limiter import RateLimiter, SlidingWindow

from conftest import FakeClock


def _limiter(clock: FakeClock, **limits: tuple[int, float]) -> RateLimiter:
    return RateLimiter(
        {name: RateLimitSettings(max_requests=n, window=w) for name, (n, w) in limits.items()},
        clock=clock,
    )


class TestSlidingWindow:
    def test_admits_up_to_max_then_denies(self, clock: FakeClock) -> None:
        window = SlidingWindow(3, 60, clock)
        assert [window.is_allowed("alice") for _ in range(4)] == [True, True, True, False]

    def test_new_window_after_reset_time(self, clock: FakeClock) -> None:
        window = SlidingWindow(3, 60, clock)
        for _ in range(4):
            window.is_allowed("alice")
        clock.advance(60)
        assert window.is_allowed("alice")
        assert window.remaining("alice") == 2

    def test_keys_are_independent(self, clock: FakeClock) -> None:
        window = SlidingWindow(1, 60, clock)
        assert window.is_allowed("alice")
        assert not window.is_allowed("alice")
        assert window.is_allowed("bob")

    def test_remaining_and_reset_in(self, clock: FakeClock) -> None:
        window = SlidingWindow(5, 60, clock)
        assert window.remaining("alice") == 5
        assert window.reset_in("alice") == 0.0
        window.is_allowed("alice")
        clock.advance(15)
        assert window.remaining("alice") == 4
        assert window.reset_in("alice") == 45

    def test_rejects_non_positive_limits(self) -> None:
        with pytest.raises(ValueError):
            SlidingWindow(0, 60)


class TestRateLimiter:
    def test_classes_do_not_share_quota(self, clock: FakeClock) -> None:
        limiter = _limiter(clock, lending=(1, 60), swap=(1, 60))
        assert limiter.is_allowed("lending", "alice")
        assert not limiter.is_allowed("lending", "alice")
        assert limiter.is_allowed("swap", "alice")

    def test_check_raises_with_rounded_up_retry_after(self, clock: FakeClock) -> None:
        limiter = _limiter(clock, lending=(1, 60))
        limiter.check("lending", "alice")
        clock.advance(10.5)

        with pytest.raises(RateLimitError) as exc_info:
            limiter.check("lending", "alice")

        assert exc_info.value.retry_after == 50
        assert exc_info.value.operation_class == "lending"
        assert "50 seconds" in str(exc_info.value)

    def test_unknown_class(self, clock: FakeClock) -> None:
        limiter = _limiter(clock, general=(10, 60))
        with pytest.raises(ConfigError) as exc_info:
            limiter.check("staking", "alice")
        assert exc_info.value.variable == "rate_limits.staking"

    def test_status_reset_and_accessors(self, clock: FakeClock) -> None:
        limiter = _limiter(clock, general=(3, 60))
        limiter.check("general", "alice")
        limiter.check("general", "alice")

        assert limiter.remaining("general", "alice") == 1
        assert limiter.reset_in("general", "alice") == 60
        assert limiter.status("general", "alice").remaining == 1

        limiter.reset("general", "alice")
        assert limiter.remaining("general", "alice") == 3

    def test_sweep_drops_only_expired_windows(self, clock: FakeClock) -> None:
        limiter = _limiter(clock, short=(5, 10), long=(5, 600))
        limiter.check("short", "alice")
        limiter.check("long", "alice")
        clock.advance(10)

        assert limiter.sweep() == 1
        assert limiter.remaining("long", "alice") == 4

    def test_from_settings_uses_defaults(self) -> None:
        limiter = RateLimiter.from_settings(Settings())
        assert sorted(limiter.operation_classes) == ["general", "lending", "rewards", "swap"]

    @pytest.mark.asyncio
    async def test_decorator_denies_before_calling(self, clock: FakeClock) -> None:
        limiter = _limiter(clock, swap=(1, 60))
        inner = AsyncMock(return_value="swapped")

        @limiter.rate_limited("swap", key_func=lambda user, amount: user)
        async def do_swap(user: str, amount: int) -> str:
            return await inner(user, amount)

        assert await do_swap("alice", 10) == "swapped"
        with pytest.raises(RateLimitError):
            await do_swap("alice", 20)
        inner.assert_awaited_once_with("alice", 10)

    @pytest.mark.asyncio
    async def test_sweeper_runs_on_interval(self, clock: FakeClock) -> None:
        limiter = RateLimiter(
            {"general": RateLimitSettings(max_requests=5, window=60)},
            clock=clock,
            sweep_interval=300,
        )
        limiter.check("general", "alice")
        clock.advance(60)

        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
        with patch("canister_client.resilience.rate_limiter.asyncio.sleep", new=sleep):
            with pytest.raises(asyncio.CancelledError):
                await limiter.run_sweeper()

        sleep.assert_awaited_with(300)
        assert len(limiter._windows["general"]) == 0

    @pytest.mark.asyncio
    async def test_start_and_stop_sweeper(self, clock: FakeClock) -> None:
        limiter = _limiter(clock, general=(5, 60))
        assert not limiter.sweeper_running

        task = limiter.start_sweeper()
        assert limiter.start_sweeper() is task
        assert limiter.sweeper_running

        await limiter.stop_sweeper()
        assert task.cancelled()
        assert not limiter.sweeper_running
        await limiter.stop_sweeper()
