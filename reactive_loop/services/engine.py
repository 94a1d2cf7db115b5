"""LoopEngine: wiring, lifecycle and user commands for one leverage loop."""
from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from ..chains.evm import EvmClient
from ..config import AppConfig
from ..errors import (
    ChainReadError,
    ConfigurationError,
    LoopEngineError,
    ObservationError,
    SubmissionError,
)
from ..interfaces.chain import ChainClient
from ..interfaces.notifier import Notifier
from ..models import (
    DepositedEvent,
    LoopEvent,
    LoopStepEvent,
    Position,
    PositionClosedEvent,
    PositionSnapshot,
)
from ..notifications import build_notifiers
from ..signing import borrow_signer
from .event_monitor import LoopEventMonitor
from .metrics import MetricsProjector
from .permit import PermitAuthorizer
from .position_reader import PositionReader
from .reconciler import (
    CommandFailed,
    DepositSubmitted,
    EventObserved,
    ObservationFailed,
    SessionStatus,
    SessionUpdate,
    SnapshotPolled,
    WatchdogExpired,
)
from .session import LoopSession, SessionView
from .termination import TerminationPolicy
from .transactions import AutomationController, DepositInitiator, PositionWriter

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

SETTLED = (SessionStatus.COMPLETED, SessionStatus.TIMED_OUT, SessionStatus.CLOSED)


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    tx_ref: str | None = None
    error: LoopEngineError | None = None

    @classmethod
    def failed(cls, error: LoopEngineError) -> CommandResult:
        return cls(ok=False, tx_ref=getattr(error, "tx_ref", None), error=error)


class LoopEngine:
    """Presentation-facing facade over a LoopSession.

    ``start`` binds a session to the configured automation account and runs
    the event and position producers; commands move funds and are never
    retried. Alerts fan out to every configured notifier.
    """

    def __init__(
        self,
        config: AppConfig,
        chain: ChainClient | None = None,
        notifiers: list[Notifier] | None = None,
        signer_factory: Callable[[str], Any] = borrow_signer,
        automation_chain: ChainClient | None = None,
    ) -> None:
        self._config = config
        self._loop_cfg = config.loop
        self._contracts = config.contracts
        self._chain: ChainClient = chain if chain is not None else EvmClient(config.primary_chain)
        if automation_chain is None and config.automation_chain.rpc_endpoints:
            automation_chain = EvmClient(config.automation_chain)
        self._automation_chain = automation_chain
        self._notifiers = notifiers if notifiers is not None else build_notifiers(config.notifications)
        self._signer_factory = signer_factory

        self._account = config.contracts.automation_account
        self._caller = config.contracts.automation_caller
        self._user = config.wallet.address

        self._policy = TerminationPolicy(
            target_ltv_bps=self._loop_cfg.target_ltv_bps,
            max_iterations=self._loop_cfg.max_iterations,
        )
        self._projector = MetricsProjector(
            danger_threshold_percent=Decimal(str(self._loop_cfg.danger_threshold_percent))
        )
        self._permits = PermitAuthorizer(
            self._chain, validity_seconds=self._loop_cfg.permit_validity_seconds
        )

        self._session: LoopSession | None = None
        self._deposits: DepositInitiator | None = None
        self._writer: PositionWriter | None = None
        self._reader: PositionReader | None = None
        self._monitor: LoopEventMonitor | None = None
        self._tasks: list[asyncio.Task] = []
        self._refreshes: set[asyncio.Task] = set()
        self._in_danger = False
        if self._account:
            self._bind(self._account)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    @property
    def configured(self) -> bool:
        return bool(self._account and self._caller)

    @property
    def session(self) -> LoopSession | None:
        return self._session

    def _bind(self, account: str) -> None:
        decimals = self._loop_cfg.token_decimals
        primary_id = self._config.primary_chain.chain_id
        self._account = account
        self._deposits = DepositInitiator(self._chain, account, primary_id, decimals)
        self._writer = PositionWriter(self._chain, account, primary_id, decimals)
        self._reader = PositionReader(
            self._chain, account, self._user, self._contracts.collateral_token, decimals
        )

    def _base_units(self, amount: Decimal) -> int:
        return int(amount * (Decimal(10) ** self._loop_cfg.token_decimals))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create the session and start the event and position producers."""
        if self._session is not None and self._session.running:
            return
        if not self.configured:
            raise ConfigurationError("Automation account and caller must both be configured")
        head = await self._chain.block_number()

        session = LoopSession(
            self._user,
            self._account,
            self._policy,
            self._projector,
            self._loop_cfg.watchdog_timeout_seconds,
        )
        session.add_listener(self._on_update)
        session.start()
        self._session = session

        self._monitor = LoopEventMonitor(
            self._chain,
            self._account,
            self._user,
            sink=self._on_event,
            config=self._config.events,
            decimals=self._loop_cfg.token_decimals,
            on_failure=self._on_observation_failure,
        )
        self._monitor.start_at(head)

        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._monitor.run(), name="loop-events"),
            loop.create_task(
                self._reader.run(
                    self._on_snapshot,
                    self._loop_cfg.poll_interval_seconds,
                    self._loop_cfg.max_missed_polls,
                    on_failure=self._on_observation_failure,
                ),
                name="position-poll",
            ),
        ]
        logger.info("Engine started on account %s", self._account)

    async def stop(self) -> None:
        """Tear down producers and the session. Submitted transactions are left alone."""
        if self._monitor is not None:
            self._monitor.stop()
        tasks = [*self._tasks, *self._refreshes]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self._refreshes.clear()
        if self._session is not None:
            await self._session.stop()
        logger.info("Engine stopped")

    async def __aenter__(self) -> LoopEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def run_until_settled(self, timeout: float | None = None) -> SessionView:
        """Wait for the loop to complete, time out or close."""
        if self._session is None:
            raise ConfigurationError("Engine has not been started")
        return await self._session.wait_until(lambda view: view.status in SETTLED, timeout)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def _submit(self, update: SessionUpdate) -> None:
        if self._session is not None:
            await self._session.submit(update)

    async def _on_event(self, event: LoopEvent) -> None:
        await self._submit(EventObserved(event))

    async def _on_snapshot(self, snapshot: PositionSnapshot) -> None:
        await self._submit(SnapshotPolled(snapshot))

    async def _on_observation_failure(self, error: ObservationError) -> None:
        await self._submit(ObservationFailed(error))

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def view(self) -> SessionView:
        if self._session is not None:
            return self._session.view()
        return SessionView(
            position=Position.empty(),
            metrics=self._projector.project(Position.empty()),
            timeline=(),
            iterations=(),
            status=SessionStatus.IDLE,
            stop_reason=None,
            error=None,
            wallet_balance=Decimal(0),
        )

    async def read_position(self) -> PositionSnapshot:
        """One on-demand poll, also fed to the running session."""
        if self._reader is None:
            raise ConfigurationError("Automation account is not configured")
        snapshot = await self._reader.read()
        await self._submit(SnapshotPolled(snapshot))
        return snapshot

    async def automation_chain_head(self) -> int | None:
        """Latest block on the automation chain, or None when unreachable."""
        if self._automation_chain is None:
            return None
        try:
            return await self._automation_chain.block_number()
        except ChainReadError as e:
            logger.warning("Automation chain unreachable: %s", e)
            return None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _fail(self, command: str, error: LoopEngineError) -> CommandResult:
        logger.error("%s failed: %s", command, error)
        await self._submit(CommandFailed(command, error))
        return CommandResult.failed(error)

    async def _execute(
        self, command: str, action: Callable[[Any], Awaitable[str | None]]
    ) -> CommandResult:
        """Run one write with a borrowed signer; every failure becomes a failed result."""
        try:
            async with self._signer_factory(self._config.wallet.private_key) as signer:
                tx_ref = await action(signer)
        except LoopEngineError as e:
            return await self._fail(command, e)
        except Exception as e:
            logger.exception("%s raised an unexpected error", command)
            return await self._fail(
                command, SubmissionError(f"{command} failed: {type(e).__name__}: {e}")
            )
        return CommandResult(ok=True, tx_ref=tx_ref)

    async def configure(self, account: str, caller: str) -> CommandResult:
        """Bind the automation account and make ``caller`` its trusted caller.

        A caller mismatch that cannot be corrected is fatal to the session.
        """
        for label, value in (("account", account), ("caller", caller)):
            if not _ADDRESS_RE.match(value or ""):
                return await self._fail(
                    "configure", ConfigurationError(f"Automation {label} '{value}' is not a valid address")
                )
        if self._session is not None and account.lower() != self._account.lower():
            await self.stop()
            self._session = None
        self._bind(account)
        self._caller = caller

        async def _ensure(signer) -> str | None:
            return await self._writer.ensure_automation_caller(caller, signer)

        result = await self._execute("configure", _ensure)
        if isinstance(result.error, ConfigurationError) and self._session is not None:
            await self.stop()
        return result

    async def initiate_deposit(self, amount: Decimal) -> CommandResult:
        """Sign a permit for ``amount`` and submit depositWithPermit."""
        if self._deposits is None or not self.configured:
            return await self._fail(
                "deposit", ConfigurationError("Automation account is not configured")
            )
        token = self._contracts.collateral_token

        async def _deposit(signer) -> str:
            authorization = await self._permits.authorize(
                signer, self._account, self._base_units(amount), token
            )
            await self._submit(DepositSubmitted(amount))
            receipt = await self._deposits.deposit(authorization, signer)
            if receipt.event is None:
                logger.warning(
                    "depositWithPermit %s emitted no Deposited event; waiting for the monitor",
                    receipt.tx_ref,
                )
            else:
                logger.info(
                    "Deposit of %s confirmed in block %d: %s",
                    receipt.event.amount,
                    receipt.block_number,
                    receipt.tx_ref,
                )
            return receipt.tx_ref

        return await self._execute("deposit", _deposit)

    async def close_position(self) -> CommandResult:
        if self._writer is None:
            return await self._fail(
                "close", ConfigurationError("Automation account is not configured")
            )

        async def _close(signer) -> str:
            outcome = await self._writer.full_close(
                self._contracts.collateral_token, self._contracts.debt_token, signer
            )
            return outcome.tx_ref

        return await self._execute("close", _close)

    async def repay(self, amount: Decimal) -> CommandResult:
        if self._writer is None:
            return await self._fail(
                "repay", ConfigurationError("Automation account is not configured")
            )

        async def _repay(signer) -> str:
            outcome = await self._writer.repay_partial(self._contracts.debt_token, amount, signer)
            return outcome.tx_ref

        return await self._execute("repay", _repay)

    async def withdraw(self, amount: Decimal) -> CommandResult:
        if self._writer is None:
            return await self._fail(
                "withdraw", ConfigurationError("Automation account is not configured")
            )

        async def _withdraw(signer) -> str:
            outcome = await self._writer.withdraw(self._contracts.collateral_token, amount, signer)
            return outcome.tx_ref

        return await self._execute("withdraw", _withdraw)

    async def resume_automation(self) -> CommandResult:
        """Call resume() on the reactive caller so it follows the account's events again.

        This is the remedy when the watchdog fired because the automation
        contract was paused.
        """
        if self._automation_chain is None or not _ADDRESS_RE.match(self._caller or ""):
            return await self._fail(
                "resume",
                ConfigurationError("Automation chain endpoint and caller must both be configured"),
            )
        controller = AutomationController(
            self._automation_chain, self._caller, self._config.automation_chain.chain_id
        )

        async def _resume(signer) -> str:
            outcome = await controller.resume(signer)
            return outcome.tx_ref

        return await self._execute("resume", _resume)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _format_address(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    def _position_lines(self, view: SessionView) -> str:
        metrics = view.metrics
        return (
            f"Collateral: {view.position.collateral_value:,.4f}\n"
            f"Debt: {view.position.debt_value:,.4f}\n"
            f"LTV: {metrics.ltv_percent:.2f}% · Leverage: {metrics.leverage_multiple:.2f}x"
        )

    def _build_completion_log(self, view: SessionView) -> str:
        reason = view.stop_reason.value if view.stop_reason else "unknown"
        return (
            f"🔁 Loop finished · {len(view.iterations)} iteration(s)\n"
            f"\n"
            f"Reason: {reason}\n"
            f"{self._position_lines(view)}\n"
            f"\n"
            f"Account: {self._format_address(self._account)}\n"
            f"{self._now_str()} UTC"
        )

    def _build_close_log(self, event: PositionClosedEvent) -> str:
        return (
            f"✅ Position closed\n"
            f"\n"
            f"Debt repaid: {event.debt_repaid:,.4f}\n"
            f"Collateral returned: {event.collateral_returned:,.4f}\n"
            f"\n"
            f"Tx: {event.tx_ref}\n"
            f"{self._now_str()} UTC"
        )

    def _build_danger_alert(self, view: SessionView) -> str:
        return (
            f"🚨 DANGER: LTV {view.metrics.ltv_percent:.2f}%\n"
            f"\n"
            f"{self._position_lines(view)}\n"
            f"Threshold: {self._loop_cfg.danger_threshold_percent:.2f}%\n"
            f"\n"
            f"⚠️ Repay debt or withdraw the position!\n"
            f"\n"
            f"Account: {self._format_address(self._account)}\n"
            f"{self._now_str()} UTC"
        )

    def _build_error_alert(self, title: str, view: SessionView) -> str:
        return (
            f"⚠️ {title}\n"
            f"\n"
            f"{view.error}\n"
            f"\n"
            f"{self._position_lines(view)}\n"
            f"\n"
            f"Account: {self._format_address(self._account)}\n"
            f"{self._now_str()} UTC"
        )

    async def _send_log(self, message: str, silent: bool = False) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    async def _refresh_position(self) -> None:
        snapshot = await self._reader.tick()
        if snapshot is not None:
            await self._submit(SnapshotPolled(snapshot))

    def _schedule_refresh(self) -> None:
        # Deposited amounts are token units; the position only moves on a getStatus read.
        task = asyncio.get_running_loop().create_task(
            self._refresh_position(), name="position-refresh"
        )
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    async def _on_update(self, update: SessionUpdate, view: SessionView) -> None:
        if isinstance(update, EventObserved):
            event = update.event
            if isinstance(event, DepositedEvent) and self._reader is not None:
                self._schedule_refresh()
            elif isinstance(event, LoopStepEvent) and view.status is SessionStatus.COMPLETED:
                await self._send_log(self._build_completion_log(view))
            elif isinstance(event, PositionClosedEvent):
                await self._send_log(self._build_close_log(event))
        elif isinstance(update, WatchdogExpired) and view.status is SessionStatus.TIMED_OUT:
            await self._send_alert(
                self._build_error_alert("No automation response", view),
                subject="⚠️ Loop timed out",
            )
        elif isinstance(update, ObservationFailed):
            await self._send_alert(
                self._build_error_alert("Monitoring interrupted", view),
                subject="⚠️ Loop monitoring interrupted",
            )

        danger = view.metrics.danger
        if danger and not self._in_danger:
            await self._send_alert(
                self._build_danger_alert(view), subject="🚨 DANGER: High LTV"
            )
        self._in_danger = danger
