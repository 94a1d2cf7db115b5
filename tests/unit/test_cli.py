"""Unit tests for CLI argument parsing and rendering."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from reactive_loop.cli import build_parser, render_view
from reactive_loop.errors import AutomationTimeoutError
from reactive_loop.models import Position
from reactive_loop.services.metrics import MetricsProjector
from reactive_loop.services.reconciler import SessionStatus
from reactive_loop.services.session import SessionView
from reactive_loop.services.termination import StopReason
from reactive_loop.services.timeline import ActivityTimeline


class TestBuildParser:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_run_command_amount(self) -> None:
        args = build_parser().parse_args(["run", "0.04"])
        assert args.command == "run"
        assert args.amount == Decimal("0.04")
        assert args.timeout is None

    def test_run_rejects_non_positive_amount(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "0"])

    def test_run_rejects_garbage_amount(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "lots"])

    def test_configure_overrides(self) -> None:
        args = build_parser().parse_args(["configure", "--account", "0xa", "--caller", "0xb"])
        assert args.account == "0xa"
        assert args.caller == "0xb"

    def test_position_commands(self) -> None:
        parser = build_parser()
        assert parser.parse_args(["repay", "1.5"]).amount == Decimal("1.5")
        assert parser.parse_args(["withdraw", "2"]).amount == Decimal(2)
        assert parser.parse_args(["close"]).command == "close"
        assert parser.parse_args(["watch"]).command == "watch"

    def test_resume_command(self) -> None:
        assert build_parser().parse_args(["resume"]).command == "resume"

    def test_config_and_log_level_flags(self) -> None:
        args = build_parser().parse_args(["--config", "/tmp/c.yaml", "--log-level", "DEBUG", "status"])
        assert args.config == "/tmp/c.yaml"
        assert args.log_level == "DEBUG"

    def test_no_command(self) -> None:
        assert build_parser().parse_args([]).command is None


class TestRenderView:
    def test_renders_position_and_timeline(self) -> None:
        timeline = ActivityTimeline(clock=lambda: datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        timeline.add_deposit(Decimal("0.04"), "0xdep")
        timeline.add_waiting()
        timeline.add_error("No automation response within 300s of deposit")
        position = Position.from_values(Decimal(4), Decimal(3))
        view = SessionView(
            position=position,
            metrics=MetricsProjector().project(position),
            timeline=timeline.entries,
            iterations=(),
            status=SessionStatus.TIMED_OUT,
            stop_reason=StopReason.TIMEOUT,
            error=AutomationTimeoutError(300),
            wallet_balance=Decimal("1.25"),
        )

        text = render_view(view)

        assert "Status: timed_out (timeout)" in text
        assert "LTV: 75.00%" in text
        assert "Leverage: 4.00x" in text
        assert "12:00:00 [success] Deposit 0.04  0xdep" in text
        assert "Waiting for automation" in text
        assert "Last error:" in text
