"""Fixed-interval position polling: the reconciliation backstop for events."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal

from ..errors import ChainReadError, ObservationError
from ..interfaces.chain import ChainClient
from ..models import Position, PositionSnapshot

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 1.0

SnapshotSink = Callable[[PositionSnapshot], Awaitable[None]]
FailureSink = Callable[[ObservationError], Awaitable[None]]


class PositionReader:
    """Read ``getStatus()`` and the wallet balance, pinned to one block."""

    def __init__(
        self,
        chain: ChainClient,
        account: str,
        user: str,
        collateral_token: str,
        decimals: int = 18,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._chain = chain
        self._account = account
        self._user = user
        self._collateral_token = collateral_token
        self._scale = Decimal(10) ** decimals
        self._sleep = sleep
        self.missed_polls = 0

    async def read(self) -> PositionSnapshot:
        """One consistent read. Raises ChainReadError."""
        block = await self._chain.block_number()
        collateral, debt, ltv = await self._chain.get_status(self._account, block)
        balance = await self._chain.balance_of(self._collateral_token, self._user, block)
        return PositionSnapshot(
            position=Position.from_chain(
                Decimal(collateral) / self._scale,
                Decimal(debt) / self._scale,
                ltv,
            ),
            wallet_balance=Decimal(balance) / self._scale,
            block_number=block,
            read_at=datetime.now(timezone.utc),
        )

    async def _read_with_retry(self) -> PositionSnapshot:
        try:
            return await self.read()
        except ChainReadError as e:
            logger.info("Position read failed (%s); retrying once", e)
            await self._sleep(RETRY_BACKOFF_SECONDS)
            return await self.read()

    async def tick(self) -> PositionSnapshot | None:
        """Single poll; a miss is logged and returns None."""
        try:
            snapshot = await self._read_with_retry()
        except ChainReadError as e:
            self.missed_polls += 1
            logger.warning("Missed position poll #%d: %s", self.missed_polls, e)
            return None
        self.missed_polls = 0
        return snapshot

    async def run(
        self,
        sink: SnapshotSink,
        interval_seconds: float,
        max_missed_polls: int = 3,
        on_failure: FailureSink | None = None,
    ) -> None:
        """Poll forever; escalate only after ``max_missed_polls`` misses in a row."""
        logger.info("Polling position every %.1fs", interval_seconds)
        escalated = False
        while True:
            snapshot = await self.tick()
            if snapshot is not None:
                escalated = False
                await sink(snapshot)
            elif self.missed_polls >= max_missed_polls and not escalated:
                escalated = True
                error = ObservationError(
                    f"Position status unavailable for {self.missed_polls} consecutive polls"
                )
                logger.error("%s", error)
                if on_failure is not None:
                    await on_failure(error)
            await self._sleep(interval_seconds)
