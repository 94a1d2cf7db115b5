"""Command-line interface for the reactive leverage loop."""
from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation

from .config import load_config
from .errors import LoopEngineError
from .logging_setup import configure_logging
from .models import ActivityEntry, ActivityKind
from .services import CommandResult, LoopEngine, SessionView


def _amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"'{value}' is not a number")
    if amount <= 0:
        raise argparse.ArgumentTypeError("amount must be positive")
    return amount


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="reactive-loop",
        description="Cross-chain leverage loop driven by a reactive automation contract",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show the current position and metrics")

    configure_parser = sub.add_parser(
        "configure", help="Point the automation account at its reactive caller"
    )
    configure_parser.add_argument("--account", default=None, help="Automation account address")
    configure_parser.add_argument("--caller", default=None, help="Automation caller address")

    run_parser = sub.add_parser("run", help="Deposit with a permit and follow the loop")
    run_parser.add_argument("amount", type=_amount, help="Collateral amount to deposit")
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up waiting after this many seconds (default: wait for the watchdog)",
    )

    sub.add_parser("watch", help="Follow loop events and position updates")

    repay_parser = sub.add_parser("repay", help="Repay part of the debt")
    repay_parser.add_argument("amount", type=_amount)

    withdraw_parser = sub.add_parser("withdraw", help="Withdraw collateral")
    withdraw_parser.add_argument("amount", type=_amount)

    sub.add_parser("close", help="Fully close the position")
    sub.add_parser("resume", help="Resume the reactive caller's event subscriptions")

    return parser


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _describe(entry: ActivityEntry) -> str:
    payload = entry.payload
    if entry.kind is ActivityKind.DEPOSIT:
        return f"Deposit {payload.amount}"
    if entry.kind is ActivityKind.WAITING:
        return "Waiting for automation"
    if entry.kind is ActivityKind.LOOP_STEP:
        return (
            f"Loop step: borrowed {payload.borrowed}, supplied {payload.supplied}, "
            f"LTV {payload.new_ltv_percent:.2f}%"
        )
    if entry.kind is ActivityKind.CLOSE:
        return (
            f"Closed: repaid {payload.debt_repaid}, "
            f"returned {payload.collateral_returned}"
        )
    return f"Error: {payload.message}"


def render_view(view: SessionView) -> str:
    position, metrics = view.position, view.metrics
    lines = [
        f"Status: {view.status.value}"
        + (f" ({view.stop_reason.value})" if view.stop_reason else ""),
        f"Collateral: {position.collateral_value}",
        f"Debt: {position.debt_value}",
        f"Equity: {metrics.equity}",
        f"LTV: {metrics.ltv_percent:.2f}%" + ("  [DANGER]" if metrics.danger else ""),
        f"Leverage: {metrics.leverage_multiple:.2f}x",
        f"Wallet balance: {view.wallet_balance}",
    ]
    if view.error is not None:
        lines.append(f"Last error: {view.error}")
    if view.timeline:
        lines.append("")
        lines.append("Activity:")
        for entry in view.timeline:
            stamp = entry.timestamp.strftime("%H:%M:%S")
            ref = f"  {entry.tx_ref}" if entry.tx_ref else ""
            lines.append(f"  {stamp} [{entry.status.value}] {_describe(entry)}{ref}")
    return "\n".join(lines)


def _report(name: str, result: CommandResult) -> int:
    if result.ok:
        print(f"{name} confirmed" + (f": {result.tx_ref}" if result.tx_ref else ""))
        return 0
    print(f"{name} failed: {result.error}", file=sys.stderr)
    return 1


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _watch(engine: LoopEngine) -> int:
    await engine.start()
    try:
        view = await engine.run_until_settled()
    finally:
        await engine.stop()
    print(render_view(view))
    return 0


async def _run_loop(engine: LoopEngine, amount: Decimal, timeout: float | None) -> int:
    await engine.start()
    try:
        result = await engine.initiate_deposit(amount)
        if not result.ok:
            return _report("Deposit", result)
        print(f"Deposit submitted: {result.tx_ref}")
        try:
            view = await engine.run_until_settled(timeout)
        except asyncio.TimeoutError:
            view = engine.view()
            print("Stopped waiting; the loop may still be running", file=sys.stderr)
    finally:
        await engine.stop()
    print(render_view(view))
    return 0 if view.error is None else 1


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    engine = LoopEngine(config)

    if args.command == "status":
        await engine.read_position()
        print(render_view(engine.view()))
        head = await engine.automation_chain_head()
        print(f"Automation chain head: {head if head is not None else 'unreachable'}")
        return 0
    if args.command == "configure":
        account = args.account or config.contracts.automation_account
        caller = args.caller or config.contracts.automation_caller
        return _report("Configure", await engine.configure(account, caller))
    if args.command == "run":
        return await _run_loop(engine, args.amount, args.timeout)
    if args.command == "watch":
        return await _watch(engine)
    if args.command == "repay":
        return _report("Repay", await engine.repay(args.amount))
    if args.command == "withdraw":
        return _report("Withdraw", await engine.withdraw(args.amount))
    if args.command == "close":
        return _report("Close", await engine.close_position())
    if args.command == "resume":
        return _report("Resume", await engine.resume_automation())

    build_parser().print_help()
    return 1


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        code = asyncio.run(_run(args))
    except LoopEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)
