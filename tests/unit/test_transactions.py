"""Unit tests for deposit and position write commands."""
from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import (
    ACCOUNT,
    CALLER,
    COLLATERAL,
    DEBT,
    LASNA,
    SEPOLIA,
    USER,
    WEI,
    FakeChain,
    FakeSigner,
    deposited_log,
)

from reactive_loop.chains.evm.abi import AUTOMATION_CALLER_ABI
from reactive_loop.errors import (
    ChainReadError,
    ConfigurationError,
    InsufficientBalance,
    NetworkMismatch,
    StaleNonce,
    SubmissionError,
    TransactionReverted,
)
from reactive_loop.models import PermitAuthorization
from reactive_loop.services.transactions import (
    AutomationController,
    DepositInitiator,
    PositionWriter,
)


def _authorization(amount: int = WEI, nonce: int = 0) -> PermitAuthorization:
    return PermitAuthorization(
        owner=USER,
        spender=ACCOUNT,
        token=COLLATERAL,
        amount=amount,
        nonce=nonce,
        deadline=4600,
        v=27,
        r=b"\x01" * 32,
        s=b"\x02" * 32,
    )


@pytest.fixture()
def initiator(fake_chain: FakeChain) -> DepositInitiator:
    return DepositInitiator(fake_chain, ACCOUNT, SEPOLIA)


@pytest.fixture()
def writer(fake_chain: FakeChain) -> PositionWriter:
    return PositionWriter(fake_chain, ACCOUNT, SEPOLIA)


class TestDepositInitiator:
    @pytest.mark.asyncio
    async def test_submits_deposit_with_permit(
        self, initiator: DepositInitiator, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.outcome_logs = [deposited_log(WEI, block=101)]
        receipt = await initiator.deposit(_authorization(), fake_signer)

        account, fn_name, args = fake_chain.transactions[0]
        assert account == ACCOUNT
        assert fn_name == "depositWithPermit"
        assert args[0].lower() == COLLATERAL
        assert args[1:] == [WEI, 4600, 27, b"\x01" * 32, b"\x02" * 32]
        assert receipt.tx_ref == "0xtx1"
        assert receipt.event is not None
        assert receipt.event.amount == Decimal(1)

    @pytest.mark.asyncio
    async def test_receipt_without_event(
        self, initiator: DepositInitiator, fake_signer: FakeSigner
    ) -> None:
        receipt = await initiator.deposit(_authorization(), fake_signer)
        assert receipt.event is None

    @pytest.mark.asyncio
    async def test_wrong_chain_is_network_mismatch(
        self, initiator: DepositInitiator, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.chain = LASNA
        with pytest.raises(NetworkMismatch) as excinfo:
            await initiator.deposit(_authorization(), fake_signer)
        assert excinfo.value.expected == SEPOLIA
        assert excinfo.value.actual == LASNA
        assert fake_chain.transactions == []

    @pytest.mark.asyncio
    async def test_insufficient_balance(
        self, initiator: DepositInitiator, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.balances[USER] = WEI - 1
        with pytest.raises(InsufficientBalance):
            await initiator.deposit(_authorization(), fake_signer)
        assert fake_chain.transactions == []

    @pytest.mark.asyncio
    async def test_replayed_nonce_is_rejected(
        self, initiator: DepositInitiator, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        authorization = _authorization(nonce=4)
        await initiator.deposit(authorization, fake_signer)
        with pytest.raises(StaleNonce):
            await initiator.deposit(authorization, fake_signer)
        assert len(fake_chain.transactions) == 1

    @pytest.mark.asyncio
    async def test_reverted_deposit_can_be_retried(
        self, initiator: DepositInitiator, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.transact_error = TransactionReverted("ERC20Permit: expired deadline")
        with pytest.raises(TransactionReverted, match="expired deadline"):
            await initiator.deposit(_authorization(), fake_signer)
        fake_chain.transact_error = None

        receipt = await initiator.deposit(_authorization(), fake_signer)
        assert receipt.tx_ref == "0xtx1"
        assert fake_chain.nonces[USER] == 1

    @pytest.mark.asyncio
    async def test_nonce_behind_chain_is_stale(
        self, initiator: DepositInitiator, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.nonces[USER] = 3
        with pytest.raises(StaleNonce):
            await initiator.deposit(_authorization(nonce=2), fake_signer)
        assert fake_chain.transactions == []

    @pytest.mark.asyncio
    async def test_replay_reaching_chain_reverts(
        self, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        # A lagging node still reports the old nonce; the token rejects the replay.
        authorization = _authorization(nonce=0)
        await DepositInitiator(fake_chain, ACCOUNT, SEPOLIA).deposit(authorization, fake_signer)
        fake_chain.nonces[USER] = 0
        fake_chain.transact_error = TransactionReverted("ERC20Permit: invalid signature")
        with pytest.raises(TransactionReverted):
            await DepositInitiator(fake_chain, ACCOUNT, SEPOLIA).deposit(
                authorization, fake_signer
            )

    @pytest.mark.asyncio
    async def test_unreadable_nonce_is_submission_error(
        self, initiator: DepositInitiator, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        async def _broken_nonce(token: str, owner: str) -> int:
            raise ChainReadError("rpc unavailable")

        fake_chain.token_nonce = _broken_nonce  # type: ignore[assignment]
        with pytest.raises(SubmissionError, match="permit nonce"):
            await initiator.deposit(_authorization(), fake_signer)
        assert fake_chain.transactions == []


class TestPositionWriter:
    @pytest.mark.asyncio
    async def test_repay_partial_in_base_units(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        outcome = await writer.repay_partial(DEBT, Decimal("0.5"), fake_signer)
        _, fn_name, args = fake_chain.transactions[0]
        assert fn_name == "repayPartial"
        assert args[1] == WEI // 2
        assert outcome.tx_ref == "0xtx1"

    @pytest.mark.asyncio
    async def test_withdraw(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        await writer.withdraw(COLLATERAL, Decimal(2), fake_signer)
        _, fn_name, args = fake_chain.transactions[0]
        assert fn_name == "withdraw"
        assert args == [args[0], 2 * WEI]
        assert args[0].lower() == COLLATERAL

    @pytest.mark.asyncio
    async def test_full_close(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        await writer.full_close(COLLATERAL, DEBT, fake_signer)
        _, fn_name, args = fake_chain.transactions[0]
        assert fn_name == "fullClosePosition"
        assert [a.lower() for a in args] == [COLLATERAL, DEBT]

    @pytest.mark.asyncio
    async def test_revert_reason_surfaced(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.transact_error = TransactionReverted("Repay exceeds debt")
        with pytest.raises(TransactionReverted, match="Repay exceeds debt"):
            await writer.repay_partial(DEBT, Decimal(1), fake_signer)

    @pytest.mark.asyncio
    async def test_caller_already_set(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.caller = CALLER
        assert await writer.ensure_automation_caller(CALLER, fake_signer) is None
        assert fake_chain.transactions == []

    @pytest.mark.asyncio
    async def test_caller_reassigned(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        tx_ref = await writer.ensure_automation_caller(CALLER, fake_signer)
        assert tx_ref == "0xtx1"
        assert fake_chain.caller.lower() == CALLER

    @pytest.mark.asyncio
    async def test_caller_rejected_is_configuration_error(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        fake_chain.transact_error = TransactionReverted("Ownable: caller is not the owner")
        with pytest.raises(ConfigurationError, match="rejected caller"):
            await writer.ensure_automation_caller(CALLER, fake_signer)

    @pytest.mark.asyncio
    async def test_caller_still_mismatched(
        self, writer: PositionWriter, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        other = "0x6666666666666666666666666666666666666666"

        async def _sticky_caller(account: str) -> str:
            return other

        fake_chain.automation_caller = _sticky_caller  # type: ignore[assignment]
        with pytest.raises(ConfigurationError, match="expected"):
            await writer.ensure_automation_caller(CALLER, fake_signer)


class TestAutomationController:
    @pytest.mark.asyncio
    async def test_resume_uses_caller_abi(self, fake_chain: FakeChain, fake_signer: FakeSigner) -> None:
        fake_chain.chain = LASNA
        outcome = await AutomationController(fake_chain, CALLER, LASNA).resume(fake_signer)

        assert fake_chain.transactions == [(CALLER, "resume", [])]
        assert fake_chain.abis == [AUTOMATION_CALLER_ABI]
        assert outcome.tx_ref == "0xtx1"

    @pytest.mark.asyncio
    async def test_resume_on_primary_chain_is_mismatch(
        self, fake_chain: FakeChain, fake_signer: FakeSigner
    ) -> None:
        with pytest.raises(NetworkMismatch):
            await AutomationController(fake_chain, CALLER, LASNA).resume(fake_signer)
        assert fake_chain.transactions == []
