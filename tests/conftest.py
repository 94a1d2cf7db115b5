"""Shared test fixtures and an in-memory chain."""
from __future__ import annotations

import textwrap
from contextlib import asynccontextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from reactive_loop.config import (
    AppConfig,
    ChainConfig,
    ContractsConfig,
    EmailConfig,
    EventsConfig,
    LoopConfig,
    NotificationsConfig,
    TelegramConfig,
    WalletConfig,
)
from reactive_loop.errors import ChainReadError, SubmissionError
from reactive_loop.models import ChainLog, TransactionOutcome

WEI = 10**18

USER = "0x1111111111111111111111111111111111111111"
OTHER_USER = "0x9999999999999999999999999999999999999999"
ACCOUNT = "0x2222222222222222222222222222222222222222"
CALLER = "0x3333333333333333333333333333333333333333"
COLLATERAL = "0x4444444444444444444444444444444444444444"
DEBT = "0x5555555555555555555555555555555555555555"

SEPOLIA = 11155111
LASNA = 5318007

# Throwaway key used only to produce real signatures in tests.
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeChain:
    """ChainClient double holding token, account and log state in memory."""

    def __init__(self) -> None:
        self.chain = SEPOLIA
        self.head = 100
        self.token_names: dict[str, str] = {COLLATERAL: "Collateral Token"}
        self.nonces: dict[str, int] = {}
        self.balances: dict[str, int] = {USER: 10 * WEI}
        self.status: tuple[int, int, int] = (0, 0, 0)
        self.caller = "0x0000000000000000000000000000000000000000"
        self.logs: list[ChainLog] = []
        self.transactions: list[tuple[str, str, list[Any]]] = []
        self.abis: list[list[dict] | None] = []
        self.outcome_logs: list[ChainLog] = []
        self.transact_error: Exception | None = None
        self.read_failures = 0
        self.log_failures = 0

    def _maybe_fail(self) -> None:
        if self.read_failures > 0:
            self.read_failures -= 1
            raise ChainReadError("rpc unavailable")

    async def chain_id(self) -> int:
        self._maybe_fail()
        return self.chain

    async def block_number(self) -> int:
        self._maybe_fail()
        return self.head

    async def token_name(self, token: str) -> str:
        self._maybe_fail()
        return self.token_names[token]

    async def token_nonce(self, token: str, owner: str) -> int:
        self._maybe_fail()
        return self.nonces.get(owner, 0)

    async def balance_of(self, token: str, owner: str, block: int | None = None) -> int:
        self._maybe_fail()
        return self.balances.get(owner, 0)

    async def get_status(self, account: str, block: int | None = None) -> tuple[int, int, int]:
        self._maybe_fail()
        return self.status

    async def automation_caller(self, account: str) -> str:
        self._maybe_fail()
        return self.caller

    async def fetch_account_logs(
        self, account: str, from_block: int, to_block: int
    ) -> list[ChainLog]:
        if self.log_failures > 0:
            self.log_failures -= 1
            raise ChainReadError("eth_getLogs failed")
        return sorted(
            (log for log in self.logs if from_block <= log.block_number <= to_block),
            key=lambda log: (log.block_number, log.log_index),
        )

    async def transact(
        self,
        account: str,
        fn_name: str,
        args: list[Any],
        signer: Any,
        abi: list[dict] | None = None,
    ) -> TransactionOutcome:
        if self.transact_error is not None:
            raise self.transact_error
        self.transactions.append((account, fn_name, args))
        self.abis.append(abi)
        if fn_name == "setRSCCaller":
            self.caller = args[0]
        elif fn_name == "depositWithPermit":
            self.nonces[signer.address] = self.nonces.get(signer.address, 0) + 1
        self.head += 1
        return TransactionOutcome(
            tx_ref=f"0xtx{len(self.transactions)}",
            block_number=self.head,
            logs=tuple(self.outcome_logs),
        )


class FakeSigner:
    def __init__(self, address: str = USER) -> None:
        self._address = address
        self.typed_data: list[dict] = []

    @property
    def address(self) -> str:
        return self._address

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> str:
        self.typed_data.append(typed_data)
        return "0x" + "ab" * 32 + "cd" * 32 + "1b"

    async def sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        return b"\x01"


def deposited_log(amount: int, block: int, user: str = USER, ltv: int = 0, index: int = 0) -> ChainLog:
    return ChainLog(
        name="Deposited",
        args={"user": user, "amount": amount, "currentLTV": ltv},
        tx_ref=f"0xdep{block}",
        block_number=block,
        log_index=index,
    )


def loop_step_log(iteration: int, ltv: int, block: int, index: int = 0) -> ChainLog:
    return ChainLog(
        name="LoopStepExecuted",
        args={
            "borrowed": WEI // 100,
            "newCollateral": WEI // 100,
            "currentLTV": ltv,
            "iterationId": iteration,
        },
        tx_ref=f"0xstep{iteration}",
        block_number=block,
        log_index=index,
    )


def closed_log(block: int) -> ChainLog:
    return ChainLog(
        name="PositionClosed",
        args={"debtRepaid": WEI // 10, "collateralReturned": WEI // 20},
        tx_ref=f"0xclose{block}",
        block_number=block,
        log_index=0,
    )


@pytest.fixture()
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture()
def signer_factory(fake_signer: FakeSigner):
    @asynccontextmanager
    async def _borrow(private_key: str):
        yield fake_signer

    return _borrow


async def no_sleep(seconds: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_loop_config() -> LoopConfig:
    return LoopConfig(
        target_ltv_bps=7500,
        max_iterations=3,
        poll_interval_seconds=0.01,
        watchdog_timeout_seconds=5.0,
        danger_threshold_percent=75.0,
    )


@pytest.fixture()
def sample_app_config(sample_loop_config: LoopConfig) -> AppConfig:
    return AppConfig(
        primary_chain=ChainConfig(
            chain_id=SEPOLIA,
            rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
            rpc_timeout=10,
        ),
        automation_chain=ChainConfig(chain_id=LASNA),
        wallet=WalletConfig(address=USER, private_key=TEST_PRIVATE_KEY),
        contracts=ContractsConfig(
            collateral_token=COLLATERAL,
            debt_token=DEBT,
            automation_account=ACCOUNT,
            automation_caller=CALLER,
        ),
        loop=sample_loop_config,
        events=EventsConfig(
            poll_interval_seconds=0.01,
            max_resubscribe_attempts=2,
            resubscribe_backoff_seconds=0.01,
        ),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    chains:
      primary:
        chain_id: {SEPOLIA}
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
      automation:
        chain_id: {LASNA}
        rpc_endpoints: ["https://lasna.example.com"]
    wallet:
      address: "{USER}"
      private_key: "${{TEST_LOOP_PRIVATE_KEY}}"
    contracts:
      collateral_token: "{COLLATERAL}"
      debt_token: "{DEBT}"
      automation_account: "{ACCOUNT}"
      automation_caller: "{CALLER}"
    loop:
      target_ltv_bps: 8000
      max_iterations: 4
      watchdog_timeout_seconds: 120
    events:
      poll_interval_seconds: 3
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


@pytest.fixture()
def decimal_amount() -> Decimal:
    return Decimal("0.04")
