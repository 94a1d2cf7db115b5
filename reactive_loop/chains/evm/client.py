"""EVM RPC client with endpoint fallback for reads."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, MismatchedABI, TimeExhausted

from ...config import ChainConfig
from ...errors import (
    ChainReadError,
    SigningDeclined,
    SubmissionError,
    TransactionReverted,
)
from ...interfaces.signer import Signer
from ...models import ChainLog, TransactionOutcome
from .abi import LEVERAGE_ACCOUNT_ABI, LOOP_EVENT_NAMES, PERMIT_TOKEN_ABI

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECEIPT_TIMEOUT_SECONDS = 180
RECEIPT_POLL_SECONDS = 1.0


class EvmClient:
    """Primary-chain client: contract reads, log queries and signed writes."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._web3s: dict[str, AsyncWeb3] = {}

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _web3(self, rpc_url: str) -> AsyncWeb3:
        web3 = self._web3s.get(rpc_url)
        if web3 is None:
            provider = AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout)},
            )
            web3 = AsyncWeb3(provider)
            self._web3s[rpc_url] = web3
        return web3

    @property
    def active_endpoint(self) -> str:
        return self.endpoints[self.current_rpc_index]

    async def _read(self, label: str, fn: Callable[[AsyncWeb3], Awaitable[T]]) -> T:
        """Run a read-only call, falling back across endpoints."""
        if not self.endpoints:
            raise ChainReadError(f"{label}: no RPC endpoints configured")

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                result = await fn(self._web3(rpc_url))
            except ContractLogicError as e:
                # Deterministic contract failure; another node would agree.
                raise ChainReadError(f"{label} reverted: {e}") from e
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, label, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index
            return result

        raise ChainReadError(
            f"{label}: all RPC endpoints failed. Last error: {last_error}"
        ) from last_error

    @staticmethod
    def _token(web3: AsyncWeb3, token: str):
        return web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token), abi=PERMIT_TOKEN_ABI
        )

    @staticmethod
    def _account(web3: AsyncWeb3, account: str):
        return web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(account), abi=LEVERAGE_ACCOUNT_ABI
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def chain_id(self) -> int:
        async def _call(web3: AsyncWeb3) -> int:
            return int(await web3.eth.chain_id)

        return await self._read("eth_chainId", _call)

    async def block_number(self) -> int:
        async def _call(web3: AsyncWeb3) -> int:
            return int(await web3.eth.block_number)

        return await self._read("eth_blockNumber", _call)

    async def token_name(self, token: str) -> str:
        async def _call(web3: AsyncWeb3) -> str:
            return str(await self._token(web3, token).functions.name().call())

        return await self._read("name", _call)

    async def token_nonce(self, token: str, owner: str) -> int:
        async def _call(web3: AsyncWeb3) -> int:
            fn = self._token(web3, token).functions.nonces(
                AsyncWeb3.to_checksum_address(owner)
            )
            return int(await fn.call())

        return await self._read("nonces", _call)

    async def balance_of(self, token: str, owner: str, block: int | None = None) -> int:
        async def _call(web3: AsyncWeb3) -> int:
            fn = self._token(web3, token).functions.balanceOf(
                AsyncWeb3.to_checksum_address(owner)
            )
            return int(await fn.call(block_identifier=block or "latest"))

        return await self._read("balanceOf", _call)

    async def get_status(
        self, account: str, block: int | None = None
    ) -> tuple[int, int, int]:
        async def _call(web3: AsyncWeb3) -> tuple[int, int, int]:
            fn = self._account(web3, account).functions.getStatus()
            collateral, debt, ltv = await fn.call(block_identifier=block or "latest")
            return int(collateral), int(debt), int(ltv)

        return await self._read("getStatus", _call)

    async def automation_caller(self, account: str) -> str:
        async def _call(web3: AsyncWeb3) -> str:
            return str(await self._account(web3, account).functions.rscCaller().call())

        return await self._read("rscCaller", _call)

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def _decode(self, web3: AsyncWeb3, account: str, raw_log: Any) -> ChainLog | None:
        contract = self._account(web3, account)
        for name in LOOP_EVENT_NAMES:
            try:
                event = contract.events[name]().process_log(raw_log)
            except MismatchedABI:
                continue
            return ChainLog(
                name=name,
                args=dict(event["args"]),
                tx_ref=AsyncWeb3.to_hex(event["transactionHash"]),
                block_number=int(event["blockNumber"]),
                log_index=int(event["logIndex"]),
            )
        return None

    async def fetch_account_logs(
        self, account: str, from_block: int, to_block: int
    ) -> list[ChainLog]:
        """Decoded loop events of the account, in (block, logIndex) order."""

        async def _call(web3: AsyncWeb3) -> list[ChainLog]:
            raw_logs = await web3.eth.get_logs(
                {
                    "address": AsyncWeb3.to_checksum_address(account),
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            )
            decoded = [self._decode(web3, account, raw) for raw in raw_logs]
            logs = [log for log in decoded if log is not None]
            logs.sort(key=lambda log: (log.block_number, log.log_index))
            return logs

        return await self._read("eth_getLogs", _call)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def transact(
        self,
        account: str,
        fn_name: str,
        args: list[Any],
        signer: Signer,
        abi: list[dict[str, Any]] | None = None,
    ) -> TransactionOutcome:
        """Sign, broadcast and wait for one confirmation. Never retried.

        Every failure surfaces as SubmissionError (TransactionReverted for
        reverts), carrying the tx ref once the transaction was broadcast.
        """
        if not self.endpoints:
            raise SubmissionError(f"{fn_name}: no RPC endpoints configured")
        web3 = self._web3(self.active_endpoint)
        sender = AsyncWeb3.to_checksum_address(signer.address)
        if abi is None:
            contract = self._account(web3, account)
        else:
            contract = web3.eth.contract(address=AsyncWeb3.to_checksum_address(account), abi=abi)

        try:
            nonce = await web3.eth.get_transaction_count(sender, "pending")
            chain_id = await web3.eth.chain_id
            transaction = await contract.functions[fn_name](*args).build_transaction(
                {"from": sender, "nonce": nonce, "chainId": chain_id}
            )
        except ContractLogicError as e:
            raise TransactionReverted(str(e.message or e)) from e
        except Exception as e:
            raise SubmissionError(f"Could not prepare {fn_name}: {e}") from e

        try:
            signed = await signer.sign_transaction(transaction)
        except SigningDeclined:
            raise
        except Exception as e:
            raise SubmissionError(f"Could not sign {fn_name}: {e}") from e

        try:
            tx_hash = await web3.eth.send_raw_transaction(signed)
        except Exception as e:
            raise SubmissionError(f"Broadcast of {fn_name} failed: {e}") from e

        tx_ref = AsyncWeb3.to_hex(tx_hash)
        logger.info("Transaction %s broadcast: %s", fn_name, tx_ref)

        try:
            receipt = await web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=RECEIPT_TIMEOUT_SECONDS,
                poll_latency=RECEIPT_POLL_SECONDS,
            )
        except TimeExhausted as e:
            raise SubmissionError(f"{fn_name} {tx_ref} not mined in time", tx_ref=tx_ref) from e
        except Exception as e:
            raise SubmissionError(
                f"Lost track of {fn_name} {tx_ref} while waiting for its receipt: {e}",
                tx_ref=tx_ref,
            ) from e

        if int(receipt.get("status", 0)) == 0:
            raise TransactionReverted(
                f"{fn_name} reverted (status=0, gasUsed={receipt.get('gasUsed')})",
                tx_ref=tx_ref,
            )

        account_address = AsyncWeb3.to_checksum_address(account)
        logs = tuple(
            log
            for log in (
                self._decode(web3, account, raw)
                for raw in receipt.get("logs", [])
                if AsyncWeb3.to_checksum_address(raw["address"]) == account_address
            )
            if log is not None
        )
        return TransactionOutcome(
            tx_ref=tx_ref, block_number=int(receipt["blockNumber"]), logs=logs
        )
