"""LoopSession: the aggregate root for one (user, automation account) pair."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal

from ..errors import LoopEngineError
from ..models import ActivityEntry, LoopIteration, Position, PositionMetrics
from .metrics import MetricsProjector
from .reconciler import (
    Effect,
    SessionState,
    SessionStatus,
    SessionUpdate,
    WatchdogExpired,
    reconcile,
)
from .termination import StopReason, TerminationPolicy, Watchdog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionView:
    """Read-only projection handed to the presentation layer."""

    position: Position
    metrics: PositionMetrics
    timeline: tuple[ActivityEntry, ...]
    iterations: tuple[LoopIteration, ...]
    status: SessionStatus
    stop_reason: StopReason | None
    error: LoopEngineError | None
    wallet_balance: Decimal

    @property
    def active(self) -> bool:
        return self.status in (SessionStatus.AWAITING_AUTOMATION, SessionStatus.LOOPING)


Listener = Callable[[SessionUpdate, SessionView], Awaitable[None]]

_STOP = object()


class LoopSession:
    """Owns position, iteration history and timeline.

    Producers (event monitor, position poll, commands, watchdog) call
    ``submit``; one writer task drains the queue and runs ``apply``, which is
    the only place session state changes.
    """

    def __init__(
        self,
        user: str,
        account: str,
        policy: TerminationPolicy,
        projector: MetricsProjector,
        watchdog_timeout_seconds: float,
    ) -> None:
        self.user = user
        self.account = account
        self.state = SessionState(user=user, account=account)
        self._policy = policy
        self._projector = projector
        self._watchdog = Watchdog(watchdog_timeout_seconds, self._on_watchdog_expired)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self._listeners: list[Listener] = []
        self._changed = asyncio.Condition()

    @property
    def watchdog(self) -> Watchdog:
        return self._watchdog

    @property
    def running(self) -> bool:
        return self._writer is not None and not self._writer.done()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._writer = asyncio.get_running_loop().create_task(self._drain())
        logger.info("Session started for user %s on account %s", self.user, self.account)

    async def stop(self) -> None:
        """Apply what is queued, stop the writer, then cancel the watchdog."""
        if self._writer is not None:
            if not self._writer.done():
                self._queue.put_nowait(_STOP)
                await self._writer
            self._writer = None
        self._watchdog.cancel()
        logger.info("Session stopped for user %s", self.user)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def submit(self, update: SessionUpdate) -> None:
        self._queue.put_nowait(update)

    async def flush(self) -> None:
        """Wait until every submitted update has been applied."""
        await self._queue.join()

    async def _on_watchdog_expired(self, generation: int) -> None:
        await self.submit(WatchdogExpired(self._watchdog.timeout_seconds, generation))

    # ------------------------------------------------------------------
    # Writer
    # ------------------------------------------------------------------

    def apply(self, update: SessionUpdate) -> SessionView:
        if isinstance(update, WatchdogExpired) and update.generation != self._watchdog.generation:
            # An iteration applied ahead of this expiry re-armed the watchdog.
            logger.debug("Dropping stale watchdog expiry (generation %d)", update.generation)
            return self.view()
        effects = reconcile(self.state, update, self._policy)
        if Effect.CANCEL_WATCHDOG in effects:
            self._watchdog.cancel()
        if Effect.ARM_WATCHDOG in effects:
            self._watchdog.arm()
        return self.view()

    async def _drain(self) -> None:
        while True:
            update = await self._queue.get()
            try:
                if update is _STOP:
                    return
                view = self.apply(update)
                for listener in self._listeners:
                    try:
                        await listener(update, view)
                    except Exception:
                        logger.exception("Session listener failed on %s", type(update).__name__)
                async with self._changed:
                    self._changed.notify_all()
            finally:
                self._queue.task_done()

    async def wait_until(
        self, predicate: Callable[[SessionView], bool], timeout: float | None = None
    ) -> SessionView:
        """Block until the view satisfies ``predicate``."""

        async def _wait() -> None:
            async with self._changed:
                await self._changed.wait_for(lambda: predicate(self.view()))

        await asyncio.wait_for(_wait(), timeout)
        return self.view()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def view(self) -> SessionView:
        state = self.state
        return SessionView(
            position=state.position,
            metrics=self._projector.project(state.position),
            timeline=state.timeline.entries,
            iterations=tuple(state.iterations),
            status=state.status,
            stop_reason=state.stop_reason,
            error=state.error,
            wallet_balance=state.wallet_balance,
        )
