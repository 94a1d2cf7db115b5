"""Configuration loader: YAML file, env var interpolation and validation."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int = 0
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class WalletConfig:
    address: str = ""
    private_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class ContractsConfig:
    collateral_token: str = ""
    debt_token: str = ""
    automation_account: str = ""
    automation_caller: str = ""


@dataclass(frozen=True)
class LoopConfig:
    target_ltv_bps: int = 7500
    max_iterations: int = 3
    poll_interval_seconds: float = 5.0
    watchdog_timeout_seconds: float = 300.0
    danger_threshold_percent: float = 75.0
    permit_validity_seconds: int = 3600
    token_decimals: int = 18
    max_missed_polls: int = 3


@dataclass(frozen=True)
class EventsConfig:
    poll_interval_seconds: float = 2.0
    max_resubscribe_attempts: int = 5
    resubscribe_backoff_seconds: float = 1.0


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    primary_chain: ChainConfig = field(default_factory=ChainConfig)
    automation_chain: ChainConfig = field(default_factory=ChainConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        chain_id=int(raw.get("chain_id", 0)),
        rpc_endpoints=tuple(url for url in raw.get("rpc_endpoints", []) if url),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_wallet(raw: dict[str, Any]) -> WalletConfig:
    return WalletConfig(
        address=raw.get("address", ""),
        private_key=raw.get("private_key", ""),
    )


def _build_contracts(raw: dict[str, Any]) -> ContractsConfig:
    return ContractsConfig(
        collateral_token=raw.get("collateral_token", ""),
        debt_token=raw.get("debt_token", ""),
        automation_account=raw.get("automation_account", ""),
        automation_caller=raw.get("automation_caller", ""),
    )


def _build_loop(raw: dict[str, Any]) -> LoopConfig:
    return LoopConfig(
        target_ltv_bps=int(raw.get("target_ltv_bps", 7500)),
        max_iterations=int(raw.get("max_iterations", 3)),
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 5.0)),
        watchdog_timeout_seconds=float(raw.get("watchdog_timeout_seconds", 300.0)),
        danger_threshold_percent=float(raw.get("danger_threshold_percent", 75.0)),
        permit_validity_seconds=int(raw.get("permit_validity_seconds", 3600)),
        token_decimals=int(raw.get("token_decimals", 18)),
        max_missed_polls=int(raw.get("max_missed_polls", 3)),
    )


def _build_events(raw: dict[str, Any]) -> EventsConfig:
    return EventsConfig(
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 2.0)),
        max_resubscribe_attempts=int(raw.get("max_resubscribe_attempts", 5)),
        resubscribe_backoff_seconds=float(raw.get("resubscribe_backoff_seconds", 1.0)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=tg.get("chat_id", ""),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)
    chains = raw.get("chains", {})

    cfg = AppConfig(
        primary_chain=_build_chain(chains.get("primary", {})),
        automation_chain=_build_chain(chains.get("automation", {})),
        wallet=_build_wallet(raw.get("wallet", {})),
        contracts=_build_contracts(raw.get("contracts", {})),
        loop=_build_loop(raw.get("loop", {})),
        events=_build_events(raw.get("events", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.primary_chain.chain_id:
        raise ValueError("Primary chain must declare a chain_id")
    if not cfg.primary_chain.rpc_endpoints:
        raise ValueError("Primary chain has no rpc_endpoints")
    if cfg.automation_chain.chain_id == cfg.primary_chain.chain_id:
        raise ValueError("Automation chain must differ from the primary chain")

    if not _ADDRESS_RE.match(cfg.wallet.address):
        raise ValueError(f"Wallet address '{cfg.wallet.address}' is not a valid address")

    for name in ("collateral_token", "debt_token"):
        value = getattr(cfg.contracts, name)
        if not _ADDRESS_RE.match(value):
            raise ValueError(f"Contract '{name}' has an invalid address '{value}'")
    # The automation pair may be supplied later through the configure command.
    for name in ("automation_account", "automation_caller"):
        value = getattr(cfg.contracts, name)
        if value and not _ADDRESS_RE.match(value):
            raise ValueError(f"Contract '{name}' has an invalid address '{value}'")

    loop = cfg.loop
    if not 0 < loop.target_ltv_bps <= 10_000:
        raise ValueError("loop.target_ltv_bps must be within (0, 10000]")
    if loop.max_iterations < 1:
        raise ValueError("loop.max_iterations must be at least 1")
    if loop.poll_interval_seconds <= 0 or loop.watchdog_timeout_seconds <= 0:
        raise ValueError("loop intervals must be positive")
