"""Frozen data models for positions, events and the activity timeline."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Union

BPS_DENOMINATOR = 10_000

_ZERO = Decimal(0)


def ltv_from_values(collateral_value: Decimal, debt_value: Decimal) -> int:
    """Debt over collateral in basis points, rounded half-up; 0 without debt."""
    if debt_value <= 0 or collateral_value <= 0:
        return 0
    ratio = debt_value / collateral_value * BPS_DENOMINATOR
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """Collateral/debt position held by the automation account (USD values)."""

    collateral_value: Decimal
    debt_value: Decimal
    ltv_bps: int

    @classmethod
    def empty(cls) -> Position:
        return cls(collateral_value=_ZERO, debt_value=_ZERO, ltv_bps=0)

    @classmethod
    def from_values(cls, collateral_value: Decimal, debt_value: Decimal) -> Position:
        return cls(
            collateral_value=collateral_value,
            debt_value=debt_value,
            ltv_bps=ltv_from_values(collateral_value, debt_value),
        )

    @classmethod
    def from_chain(
        cls, collateral_value: Decimal, debt_value: Decimal, ltv_bps: int
    ) -> Position:
        """Accept a remote status read as reported; the chain is authoritative."""
        return cls(
            collateral_value=collateral_value,
            debt_value=debt_value,
            ltv_bps=max(0, min(int(ltv_bps), BPS_DENOMINATOR)),
        )

    @property
    def is_empty(self) -> bool:
        return self.collateral_value == 0 and self.debt_value == 0

    def with_ltv(self, ltv_bps: int) -> Position:
        """Provisional position at a reported LTV, holding collateral fixed."""
        debt = self.collateral_value * Decimal(ltv_bps) / BPS_DENOMINATOR
        return Position(
            collateral_value=self.collateral_value, debt_value=debt, ltv_bps=ltv_bps
        )


@dataclass(frozen=True)
class PositionSnapshot:
    """One poll of the remote status, pinned to the block it was read at."""

    position: Position
    wallet_balance: Decimal
    block_number: int
    read_at: datetime


@dataclass(frozen=True)
class PositionMetrics:
    """Display metrics derived from a position."""

    equity: Decimal
    leverage_multiple: Decimal
    ltv_percent: Decimal
    danger: bool


# ---------------------------------------------------------------------------
# Loop history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoopIteration:
    """One borrow → swap → resupply cycle observed on-chain."""

    iteration_id: int
    borrowed_amount: Decimal
    supplied_amount: Decimal
    resulting_ltv_bps: int
    tx_ref: str
    block_number: int = 0


@dataclass(frozen=True)
class PermitAuthorization:
    """Single-use EIP-2612 permit; never persisted."""

    owner: str
    spender: str
    token: str
    amount: int
    nonce: int
    deadline: int
    v: int
    r: bytes
    s: bytes


@dataclass(frozen=True)
class ChainLog:
    """A decoded automation-account log, before domain translation."""

    name: str
    args: dict[str, Any]
    tx_ref: str
    block_number: int
    log_index: int


@dataclass(frozen=True)
class TransactionOutcome:
    """A mined, successful transaction and the account logs it emitted."""

    tx_ref: str
    block_number: int
    logs: tuple[ChainLog, ...] = ()


@dataclass(frozen=True)
class DepositReceipt:
    tx_ref: str
    block_number: int
    event: DepositedEvent | None = None


# ---------------------------------------------------------------------------
# Domain events decoded from the automation account's logs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DepositedEvent:
    user: str
    amount: Decimal
    ltv_bps: int
    tx_ref: str
    block_number: int
    log_index: int = 0


@dataclass(frozen=True)
class LoopStepEvent:
    borrowed: Decimal
    new_collateral: Decimal
    ltv_bps: int
    iteration_id: int
    tx_ref: str
    block_number: int
    log_index: int = 0


@dataclass(frozen=True)
class PositionClosedEvent:
    debt_repaid: Decimal
    collateral_returned: Decimal
    tx_ref: str
    block_number: int
    log_index: int = 0


LoopEvent = Union[DepositedEvent, LoopStepEvent, PositionClosedEvent]


# ---------------------------------------------------------------------------
# Activity timeline
# ---------------------------------------------------------------------------


class ActivityKind(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WAITING = "WAITING"
    LOOP_STEP = "LOOP_STEP"
    CLOSE = "CLOSE"
    ERROR = "ERROR"


class EntryStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class DepositPayload:
    amount: Decimal


@dataclass(frozen=True)
class LoopStepPayload:
    borrowed: Decimal
    supplied: Decimal
    new_ltv_bps: int

    @property
    def new_ltv_percent(self) -> Decimal:
        return Decimal(self.new_ltv_bps) / 100


@dataclass(frozen=True)
class ClosePayload:
    debt_repaid: Decimal
    collateral_returned: Decimal


@dataclass(frozen=True)
class ErrorPayload:
    message: str


EntryPayload = Union[DepositPayload, LoopStepPayload, ClosePayload, ErrorPayload, None]


@dataclass(frozen=True)
class ActivityEntry:
    """One user-visible step. Never mutated once appended."""

    entry_id: int
    kind: ActivityKind
    status: EntryStatus
    timestamp: datetime
    tx_ref: str | None = None
    payload: EntryPayload = field(default=None)
