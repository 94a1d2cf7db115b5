"""Append-only activity timeline."""
from __future__ import annotations

import itertools
from collections.abc import Callable, Iterator
from datetime import datetime, timezone

from ..models import (
    ActivityEntry,
    ActivityKind,
    ClosePayload,
    DepositPayload,
    EntryPayload,
    EntryStatus,
    ErrorPayload,
    LoopStepPayload,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityTimeline:
    """Journal of user-visible steps.

    Entries are only ever appended. Transient markers (a Waiting entry, an
    optimistic pending Deposit) are *resolved* rather than deleted: the
    journal keeps them, and ``entries`` hides resolved markers.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._journal: list[ActivityEntry] = []
        self._resolved: set[int] = set()
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ActivityEntry]:
        return iter(self.entries)

    @property
    def journal(self) -> tuple[ActivityEntry, ...]:
        """Every entry ever appended, resolved markers included."""
        return tuple(self._journal)

    @property
    def entries(self) -> tuple[ActivityEntry, ...]:
        return tuple(e for e in self._journal if e.entry_id not in self._resolved)

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def _append(
        self,
        kind: ActivityKind,
        status: EntryStatus,
        tx_ref: str | None = None,
        payload: EntryPayload = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            entry_id=next(self._ids),
            kind=kind,
            status=status,
            timestamp=self._clock(),
            tx_ref=tx_ref,
            payload=payload,
        )
        self._journal.append(entry)
        return entry

    def add_deposit(self, amount, tx_ref: str | None, pending: bool = False) -> ActivityEntry:
        status = EntryStatus.PENDING if pending else EntryStatus.SUCCESS
        return self._append(ActivityKind.DEPOSIT, status, tx_ref, DepositPayload(amount))

    def add_waiting(self) -> ActivityEntry:
        return self._append(ActivityKind.WAITING, EntryStatus.PENDING)

    def add_loop_step(self, borrowed, supplied, new_ltv_bps: int, tx_ref: str) -> ActivityEntry:
        return self._append(
            ActivityKind.LOOP_STEP,
            EntryStatus.SUCCESS,
            tx_ref,
            LoopStepPayload(borrowed=borrowed, supplied=supplied, new_ltv_bps=new_ltv_bps),
        )

    def add_close(self, debt_repaid, collateral_returned, tx_ref: str) -> ActivityEntry:
        return self._append(
            ActivityKind.CLOSE,
            EntryStatus.SUCCESS,
            tx_ref,
            ClosePayload(debt_repaid=debt_repaid, collateral_returned=collateral_returned),
        )

    def add_error(self, message: str, tx_ref: str | None = None) -> ActivityEntry:
        return self._append(ActivityKind.ERROR, EntryStatus.ERROR, tx_ref, ErrorPayload(message))

    # ------------------------------------------------------------------
    # Marker resolution
    # ------------------------------------------------------------------

    def pending_waiting(self) -> list[ActivityEntry]:
        return [
            e
            for e in self.entries
            if e.kind is ActivityKind.WAITING and e.status is EntryStatus.PENDING
        ]

    def resolve_waiting(self) -> int:
        """Hide every unresolved Waiting marker; return how many were resolved."""
        waiting = self.pending_waiting()
        self._resolved.update(e.entry_id for e in waiting)
        return len(waiting)

    def resolve_pending_deposit(self, tx_ref: str | None) -> bool:
        """Hide the optimistic Deposit entry that an observed deposit supersedes."""
        for entry in self.entries:
            if (
                entry.kind is ActivityKind.DEPOSIT
                and entry.status is EntryStatus.PENDING
                and (tx_ref is None or entry.tx_ref in (None, tx_ref))
            ):
                self._resolved.add(entry.entry_id)
                return True
        return False
