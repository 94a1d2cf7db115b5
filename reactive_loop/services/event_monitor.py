"""Loop event subscription over eth_getLogs polling."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal

from ..config import EventsConfig
from ..errors import ChainReadError, ObservationError
from ..interfaces.chain import ChainClient
from ..models import (
    ChainLog,
    DepositedEvent,
    LoopEvent,
    LoopStepEvent,
    PositionClosedEvent,
)

logger = logging.getLogger(__name__)

# Upper bound on blocks per eth_getLogs request; public RPCs reject wide ranges.
MAX_BLOCK_SPAN = 2_000

EventSink = Callable[[LoopEvent], Awaitable[None]]
FailureSink = Callable[[ObservationError], Awaitable[None]]


def _scale(raw: int, decimals: int) -> Decimal:
    return Decimal(int(raw)) / (Decimal(10) ** decimals)


def translate_log(log: ChainLog, decimals: int = 18) -> LoopEvent | None:
    """Map a decoded account log onto its domain event."""
    args = log.args
    if log.name == "Deposited":
        return DepositedEvent(
            user=str(args["user"]),
            amount=_scale(args["amount"], decimals),
            ltv_bps=int(args["currentLTV"]),
            tx_ref=log.tx_ref,
            block_number=log.block_number,
            log_index=log.log_index,
        )
    if log.name == "LoopStepExecuted":
        return LoopStepEvent(
            borrowed=_scale(args["borrowed"], decimals),
            new_collateral=_scale(args["newCollateral"], decimals),
            ltv_bps=int(args["currentLTV"]),
            iteration_id=int(args["iterationId"]),
            tx_ref=log.tx_ref,
            block_number=log.block_number,
            log_index=log.log_index,
        )
    if log.name == "PositionClosed":
        return PositionClosedEvent(
            debt_repaid=_scale(args["debtRepaid"], decimals),
            collateral_returned=_scale(args["collateralReturned"], decimals),
            tx_ref=log.tx_ref,
            block_number=log.block_number,
            log_index=log.log_index,
        )
    return None


class LoopEventMonitor:
    """Follow the automation account's loop events for one user.

    Events reach ``sink`` in canonical (block, logIndex) order. A failed poll
    triggers a resubscription from the last processed block with exponential
    backoff; once ``max_resubscribe_attempts`` consecutive attempts fail the
    error is handed to ``on_failure`` and the monitor stops.
    """

    def __init__(
        self,
        chain: ChainClient,
        account: str,
        user: str,
        sink: EventSink,
        config: EventsConfig,
        decimals: int = 18,
        on_failure: FailureSink | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._chain = chain
        self._account = account
        self._user = user.lower()
        self._sink = sink
        self._config = config
        self._decimals = decimals
        self._on_failure = on_failure
        self._sleep = sleep
        self._next_block: int | None = None
        self._stopped = False

    @property
    def next_block(self) -> int | None:
        return self._next_block

    def start_at(self, block_number: int) -> None:
        self._next_block = block_number

    def stop(self) -> None:
        self._stopped = True

    def _accepts(self, event: LoopEvent) -> bool:
        if isinstance(event, DepositedEvent):
            return event.user.lower() == self._user
        return True

    async def poll_once(self) -> int:
        """Deliver every event up to the chain head; return how many were delivered."""
        head = await self._chain.block_number()
        if self._next_block is None:
            self._next_block = head
        if head < self._next_block:
            return 0

        delivered = 0
        while self._next_block <= head:
            to_block = min(head, self._next_block + MAX_BLOCK_SPAN - 1)
            logs = await self._chain.fetch_account_logs(
                self._account, self._next_block, to_block
            )
            for log in logs:
                event = translate_log(log, self._decimals)
                if event is None:
                    continue
                if not self._accepts(event):
                    logger.debug("Ignoring %s for another user in %s", log.name, log.tx_ref)
                    continue
                await self._sink(event)
                delivered += 1
            self._next_block = to_block + 1
        return delivered

    async def run(self) -> None:
        """Poll until stopped or until resubscription keeps failing."""
        failures = 0
        logger.info("Subscribed to loop events on %s", self._account)
        while not self._stopped:
            try:
                await self.poll_once()
            except ChainReadError as e:
                failures += 1
                if failures > self._config.max_resubscribe_attempts:
                    error = ObservationError(
                        f"Event subscription lost after {failures - 1} resubscribe attempts: {e}"
                    )
                    logger.error("%s", error)
                    if self._on_failure is not None:
                        await self._on_failure(error)
                    return
                backoff = self._config.resubscribe_backoff_seconds * 2 ** (failures - 1)
                logger.warning(
                    "Event subscription dropped (%s); resubscribing from block %s in %.1fs",
                    e,
                    self._next_block,
                    backoff,
                )
                await self._sleep(backoff)
                continue

            if failures:
                logger.info("Event subscription restored at block %s", self._next_block)
            failures = 0
            await self._sleep(self._config.poll_interval_seconds)
