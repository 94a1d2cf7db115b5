"""State-changing calls: deposit, repay, withdraw and close on the automation
account, plus resume on the reactive caller."""
from __future__ import annotations

import logging
from decimal import Decimal

from web3 import AsyncWeb3

from ..errors import (
    ChainReadError,
    ConfigurationError,
    InsufficientBalance,
    NetworkMismatch,
    StaleNonce,
    SubmissionError,
)
from ..chains.evm.abi import AUTOMATION_CALLER_ABI
from ..interfaces.chain import ChainClient
from ..interfaces.signer import Signer
from ..models import DepositReceipt, PermitAuthorization, TransactionOutcome
from .event_monitor import translate_log

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class _AccountWriter:
    """Shared submission path: chain check, then a single unretried transact."""

    def __init__(
        self,
        chain: ChainClient,
        account: str,
        chain_id: int,
        decimals: int = 18,
    ) -> None:
        self._chain = chain
        self._account = account
        self._chain_id = chain_id
        self._decimals = decimals

    async def _ensure_chain(self) -> None:
        try:
            active = await self._chain.chain_id()
        except ChainReadError as e:
            raise SubmissionError(f"Could not determine the active chain: {e}") from e
        if active != self._chain_id:
            raise NetworkMismatch(expected=self._chain_id, actual=active)

    async def _submit(
        self, fn_name: str, args: list, signer: Signer, abi: list | None = None
    ) -> TransactionOutcome:
        await self._ensure_chain()
        logger.info("Submitting %s on %s", fn_name, self._account)
        outcome = await self._chain.transact(self._account, fn_name, args, signer, abi=abi)
        logger.info("%s confirmed in block %d: %s", fn_name, outcome.block_number, outcome.tx_ref)
        return outcome


class DepositInitiator(_AccountWriter):
    """Submit ``depositWithPermit`` and extract the resulting Deposited event."""

    def __init__(
        self,
        chain: ChainClient,
        account: str,
        chain_id: int,
        decimals: int = 18,
    ) -> None:
        super().__init__(chain, account, chain_id, decimals)
        self._consumed: set[tuple[str, str, int]] = set()

    async def deposit(
        self, authorization: PermitAuthorization, signer: Signer
    ) -> DepositReceipt:
        """Raises StaleNonce, NetworkMismatch, InsufficientBalance or TransactionReverted.

        A permit is stale once this initiator committed it or once the token's
        nonce has moved past it. A reverted deposit leaves the token nonce
        where it was, so a fresh permit for the same nonce is accepted.
        """
        key = (authorization.token.lower(), authorization.owner.lower(), authorization.nonce)
        if key in self._consumed:
            raise StaleNonce(authorization.owner, authorization.nonce)

        await self._ensure_chain()
        try:
            current_nonce = await self._chain.token_nonce(authorization.token, authorization.owner)
        except ChainReadError as e:
            raise SubmissionError(f"Could not read the permit nonce: {e}") from e
        if authorization.nonce < current_nonce:
            raise StaleNonce(authorization.owner, authorization.nonce)

        balance = await self._chain.balance_of(authorization.token, authorization.owner)
        if balance < authorization.amount:
            raise InsufficientBalance(
                f"Wallet holds {balance} base units, deposit needs {authorization.amount}"
            )

        outcome = await self._submit(
            "depositWithPermit",
            [
                AsyncWeb3.to_checksum_address(authorization.token),
                authorization.amount,
                authorization.deadline,
                authorization.v,
                authorization.r,
                authorization.s,
            ],
            signer,
        )
        self._consumed.add(key)

        event = None
        for log in outcome.logs:
            if log.name == "Deposited":
                event = translate_log(log, self._decimals)
                break
        return DepositReceipt(
            tx_ref=outcome.tx_ref, block_number=outcome.block_number, event=event
        )


class PositionWriter(_AccountWriter):
    """Manual position management. Each call moves funds and is never retried."""

    def _base_units(self, amount: Decimal) -> int:
        return int(amount * (Decimal(10) ** self._decimals))

    async def repay_partial(
        self, token: str, amount: Decimal, signer: Signer
    ) -> TransactionOutcome:
        return await self._submit(
            "repayPartial",
            [AsyncWeb3.to_checksum_address(token), self._base_units(amount)],
            signer,
        )

    async def withdraw(
        self, token: str, amount: Decimal, signer: Signer
    ) -> TransactionOutcome:
        return await self._submit(
            "withdraw",
            [AsyncWeb3.to_checksum_address(token), self._base_units(amount)],
            signer,
        )

    async def full_close(
        self, collateral_token: str, debt_token: str, signer: Signer
    ) -> TransactionOutcome:
        return await self._submit(
            "fullClosePosition",
            [
                AsyncWeb3.to_checksum_address(collateral_token),
                AsyncWeb3.to_checksum_address(debt_token),
            ],
            signer,
        )

    async def ensure_automation_caller(self, caller: str, signer: Signer) -> str | None:
        """Point the account at ``caller``; return the tx ref if a write was needed.

        Raises:
            ConfigurationError: the account still reports another caller.
        """
        current = await self._chain.automation_caller(self._account)
        if current.lower() == caller.lower():
            logger.info("Automation caller already set to %s", caller)
            return None

        if current.lower() != ZERO_ADDRESS:
            logger.warning("Automation caller is %s, reassigning to %s", current, caller)
        try:
            outcome = await self._submit(
                "setRSCCaller", [AsyncWeb3.to_checksum_address(caller)], signer
            )
        except SubmissionError as e:
            raise ConfigurationError(
                f"Automation account {self._account} rejected caller {caller}: {e}"
            ) from e

        confirmed = await self._chain.automation_caller(self._account)
        if confirmed.lower() != caller.lower():
            raise ConfigurationError(
                f"Automation account {self._account} reports caller {confirmed}, "
                f"expected {caller}"
            )
        return outcome.tx_ref


class AutomationController(_AccountWriter):
    """Writes to the reactive caller on the automation chain."""

    async def resume(self, signer: Signer) -> TransactionOutcome:
        """Re-subscribe the paused reactive contract to the account's events."""
        return await self._submit("resume", [], signer, abi=AUTOMATION_CALLER_ABI)
