"""Merge of the event stream and the position poll into session state.

Event-derived records (iterations, timeline entries) are authoritative and
ordered. Poll snapshots only replace the position when they are at least as
fresh as the last event that touched it, which is what keeps a delayed poll
from rolling back a position an event already advanced.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Union

from ..errors import AutomationTimeoutError, LoopEngineError, ObservationError
from ..models import (
    DepositedEvent,
    LoopEvent,
    LoopIteration,
    LoopStepEvent,
    Position,
    PositionClosedEvent,
    PositionSnapshot,
)
from .termination import StopReason, TerminationPolicy
from .timeline import ActivityTimeline

logger = logging.getLogger(__name__)


class SessionStatus(str, enum.Enum):
    IDLE = "idle"
    DEPOSITING = "depositing"
    AWAITING_AUTOMATION = "awaiting_automation"
    LOOPING = "looping"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


LOOP_IN_FLIGHT = (SessionStatus.AWAITING_AUTOMATION, SessionStatus.LOOPING)


class Effect(str, enum.Enum):
    ARM_WATCHDOG = "arm_watchdog"
    CANCEL_WATCHDOG = "cancel_watchdog"


# ---------------------------------------------------------------------------
# Updates fed to the session writer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DepositSubmitted:
    amount: Decimal
    tx_ref: str | None = None


@dataclass(frozen=True)
class EventObserved:
    event: LoopEvent


@dataclass(frozen=True)
class SnapshotPolled:
    snapshot: PositionSnapshot


@dataclass(frozen=True)
class WatchdogExpired:
    timeout_seconds: float
    generation: int = 0


@dataclass(frozen=True)
class CommandFailed:
    command: str
    error: LoopEngineError


@dataclass(frozen=True)
class ObservationFailed:
    error: ObservationError


SessionUpdate = Union[
    DepositSubmitted,
    EventObserved,
    SnapshotPolled,
    WatchdogExpired,
    CommandFailed,
    ObservationFailed,
]


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class SessionState:
    user: str
    account: str
    position: Position = field(default_factory=Position.empty)
    position_block: int = -1
    wallet_balance: Decimal = Decimal(0)
    iterations: list[LoopIteration] = field(default_factory=list)
    timeline: ActivityTimeline = field(default_factory=ActivityTimeline)
    status: SessionStatus = SessionStatus.IDLE
    stop_reason: StopReason | None = None
    error: LoopEngineError | None = None
    last_iteration_id: int = 0


def _event_is_newer(state: SessionState, block_number: int) -> bool:
    return block_number > state.position_block


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def reconcile(
    state: SessionState, update: SessionUpdate, policy: TerminationPolicy
) -> set[Effect]:
    """Apply one update to ``state`` in place; return the timer effects it implies."""
    if isinstance(update, EventObserved):
        return _apply_event(state, update.event, policy)

    if isinstance(update, SnapshotPolled):
        snapshot = update.snapshot
        state.wallet_balance = snapshot.wallet_balance
        if snapshot.block_number >= state.position_block:
            state.position = snapshot.position
            state.position_block = snapshot.block_number
        else:
            logger.debug(
                "Ignoring stale snapshot at block %d (events at %d)",
                snapshot.block_number,
                state.position_block,
            )
        return set()

    if isinstance(update, DepositSubmitted):
        state.timeline.add_deposit(update.amount, update.tx_ref, pending=True)
        state.status = SessionStatus.DEPOSITING
        state.error = None
        return set()

    if isinstance(update, WatchdogExpired):
        if state.status not in LOOP_IN_FLIGHT:
            return set()
        error = AutomationTimeoutError(update.timeout_seconds)
        state.status = SessionStatus.TIMED_OUT
        state.stop_reason = StopReason.TIMEOUT
        state.error = error
        state.timeline.add_error(str(error))
        return {Effect.CANCEL_WATCHDOG}

    if isinstance(update, CommandFailed):
        message = f"{update.command} failed: {update.error}"
        if update.command == "deposit" and state.status is SessionStatus.DEPOSITING:
            state.timeline.resolve_pending_deposit(None)
            state.status = SessionStatus.IDLE
        state.timeline.add_error(message, getattr(update.error, "tx_ref", None))
        state.error = update.error
        return set()

    if isinstance(update, ObservationFailed):
        state.timeline.add_error(str(update.error))
        state.error = update.error
        return set()

    raise TypeError(f"Unsupported session update: {update!r}")


def _apply_event(
    state: SessionState, event: LoopEvent, policy: TerminationPolicy
) -> set[Effect]:
    timeline = state.timeline

    if isinstance(event, DepositedEvent):
        timeline.resolve_pending_deposit(event.tx_ref)
        timeline.add_deposit(event.amount, event.tx_ref)
        timeline.add_waiting()
        # The event carries token units; getStatus reports values. The position
        # waits for the next poll.
        state.status = SessionStatus.AWAITING_AUTOMATION
        state.stop_reason = None
        state.error = None
        state.last_iteration_id = 0
        return {Effect.ARM_WATCHDOG}

    if isinstance(event, LoopStepEvent):
        timeline.resolve_waiting()
        expected = state.last_iteration_id + 1
        if event.iteration_id > expected:
            missing = (
                str(expected)
                if event.iteration_id - 1 == expected
                else f"{expected}-{event.iteration_id - 1}"
            )
            logger.warning("Loop iteration(s) %s were not observed", missing)
            timeline.add_error(f"Iteration(s) {missing} not observed; timeline has a gap")

        timeline.add_loop_step(
            event.borrowed, event.new_collateral, event.ltv_bps, event.tx_ref
        )
        state.iterations.append(
            LoopIteration(
                iteration_id=event.iteration_id,
                borrowed_amount=event.borrowed,
                supplied_amount=event.new_collateral,
                resulting_ltv_bps=event.ltv_bps,
                tx_ref=event.tx_ref,
                block_number=event.block_number,
            )
        )
        state.last_iteration_id = max(state.last_iteration_id, event.iteration_id)
        if _event_is_newer(state, event.block_number):
            state.position = state.position.with_ltv(event.ltv_bps)
            state.position_block = event.block_number

        decision = policy.decide(event.iteration_id, event.ltv_bps)
        if decision.stop:
            logger.info(
                "Loop finished at iteration %d (LTV %d bps): %s",
                event.iteration_id,
                event.ltv_bps,
                decision.reason.value,
            )
            state.status = SessionStatus.COMPLETED
            state.stop_reason = decision.reason
            return {Effect.CANCEL_WATCHDOG}
        state.status = SessionStatus.LOOPING
        state.stop_reason = None
        # A late iteration after a timeout revives the loop.
        if isinstance(state.error, AutomationTimeoutError):
            state.error = None
        return {Effect.ARM_WATCHDOG}

    if isinstance(event, PositionClosedEvent):
        timeline.resolve_waiting()
        timeline.add_close(event.debt_repaid, event.collateral_returned, event.tx_ref)
        state.position = Position.empty()
        state.position_block = max(state.position_block, event.block_number)
        state.status = SessionStatus.CLOSED
        state.last_iteration_id = 0
        return {Effect.CANCEL_WATCHDOG}

    raise TypeError(f"Unsupported loop event: {event!r}")
