"""Loop termination policy and the automation watchdog."""
from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class StopReason(str, enum.Enum):
    TARGET_REACHED = "target_reached"
    ITERATION_CAP_REACHED = "max_iterations"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Decision:
    stop: bool
    reason: StopReason | None = None

    @classmethod
    def continue_(cls) -> Decision:
        return cls(stop=False)

    @classmethod
    def stop_with(cls, reason: StopReason) -> Decision:
        return cls(stop=True, reason=reason)


CONTINUE = Decision.continue_()


@dataclass(frozen=True)
class TerminationPolicy:
    """Decide whether the automation layer should run another iteration."""

    target_ltv_bps: int = 7500
    max_iterations: int = 3

    def decide(self, iteration_id: int, ltv_bps: int) -> Decision:
        # Target first: an iteration that reaches target on the last allowed
        # step reports TARGET_REACHED.
        if ltv_bps >= self.target_ltv_bps:
            return Decision.stop_with(StopReason.TARGET_REACHED)
        if iteration_id >= self.max_iterations:
            return Decision.stop_with(StopReason.ITERATION_CAP_REACHED)
        return CONTINUE


class Watchdog:
    """Cancellable one-shot timer; ``on_expire`` runs if not re-armed in time.

    Every arm or cancel starts a new generation. ``on_expire`` receives the
    generation that expired so a consumer can drop an expiry that was
    overtaken by a later arm.
    """

    def __init__(
        self,
        timeout_seconds: float,
        on_expire: Callable[[int], Awaitable[None]],
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._on_expire = on_expire
        self._task: asyncio.Task[None] | None = None
        self.generation = 0

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        """Start the countdown, restarting it if already running."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._countdown(self.generation))

    def cancel(self) -> None:
        self.generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _countdown(self, generation: int) -> None:
        await asyncio.sleep(self.timeout_seconds)
        logger.warning("Watchdog expired after %.0fs without an iteration", self.timeout_seconds)
        self._task = None
        await self._on_expire(generation)
