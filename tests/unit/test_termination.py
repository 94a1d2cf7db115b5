"""Unit tests for the termination policy and the watchdog."""
from __future__ import annotations

import asyncio

import pytest

from reactive_loop.services.termination import (
    Decision,
    StopReason,
    TerminationPolicy,
    Watchdog,
)


class TestTerminationPolicy:
    @pytest.mark.parametrize("iteration", [1, 2, 3, 4, 10])
    @pytest.mark.parametrize("ltv", [0, 5000, 7499, 7500, 7600, 10000])
    def test_target_reached_iff_ltv_at_or_above_target(self, iteration: int, ltv: int) -> None:
        decision = TerminationPolicy(target_ltv_bps=7500, max_iterations=3).decide(iteration, ltv)
        assert (decision.reason is StopReason.TARGET_REACHED) == (ltv >= 7500)

    def test_target_checked_before_cap(self) -> None:
        decision = TerminationPolicy(7500, 3).decide(3, 7500)
        assert decision == Decision.stop_with(StopReason.TARGET_REACHED)

    def test_cap_regardless_of_ltv(self) -> None:
        policy = TerminationPolicy(7500, 3)
        assert not policy.decide(1, 4000).stop
        assert not policy.decide(2, 5000).stop
        decision = policy.decide(3, 1000)
        assert decision.stop
        assert decision.reason is StopReason.ITERATION_CAP_REACHED

    def test_continue_below_target_and_cap(self) -> None:
        decision = TerminationPolicy(7500, 3).decide(1, 7000)
        assert decision.stop is False
        assert decision.reason is None


class TestWatchdog:
    @pytest.mark.asyncio
    async def test_fires_after_timeout(self) -> None:
        fired = asyncio.Event()

        async def _expire(generation: int) -> None:
            fired.set()

        watchdog = Watchdog(0.01, _expire)
        watchdog.arm()
        await asyncio.wait_for(fired.wait(), 1.0)
        assert not watchdog.armed

    @pytest.mark.asyncio
    async def test_cancel_prevents_firing(self) -> None:
        calls: list[int] = []

        async def _expire(generation: int) -> None:
            calls.append(1)

        watchdog = Watchdog(0.02, _expire)
        watchdog.arm()
        assert watchdog.armed
        watchdog.cancel()
        await asyncio.sleep(0.05)
        assert calls == []
        assert not watchdog.armed

    @pytest.mark.asyncio
    async def test_rearm_restarts_countdown(self) -> None:
        calls: list[int] = []

        async def _expire(generation: int) -> None:
            calls.append(1)

        watchdog = Watchdog(0.2, _expire)
        watchdog.arm()
        await asyncio.sleep(0.12)
        watchdog.arm()
        await asyncio.sleep(0.12)
        assert calls == []
        await asyncio.sleep(0.3)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_expiry_reports_its_generation(self) -> None:
        expired: list[int] = []

        async def _expire(generation: int) -> None:
            expired.append(generation)

        watchdog = Watchdog(0.01, _expire)
        watchdog.arm()
        first = watchdog.generation
        await asyncio.sleep(0.05)
        assert expired == [first]

        watchdog.arm()
        assert watchdog.generation > first
        watchdog.cancel()
        await asyncio.sleep(0.05)
        assert expired == [first]
