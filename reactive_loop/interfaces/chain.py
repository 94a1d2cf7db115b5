"""Chain client protocol: reads, log queries and signed writes."""
from typing import Any, Protocol

from ..models import ChainLog, TransactionOutcome
from .signer import Signer


class ChainClient(Protocol):
    """Abstract interface for chain reads, writes and logs.

    ``abi`` selects a contract other than the leverage account for a write.
    """

    async def chain_id(self) -> int: ...

    async def block_number(self) -> int: ...

    async def token_name(self, token: str) -> str: ...

    async def token_nonce(self, token: str, owner: str) -> int: ...

    async def balance_of(
        self, token: str, owner: str, block: int | None = None
    ) -> int: ...

    async def get_status(
        self, account: str, block: int | None = None
    ) -> tuple[int, int, int]: ...

    async def automation_caller(self, account: str) -> str: ...

    async def fetch_account_logs(
        self, account: str, from_block: int, to_block: int
    ) -> list[ChainLog]: ...

    async def transact(
        self,
        account: str,
        fn_name: str,
        args: list[Any],
        signer: Signer,
        abi: list[dict[str, Any]] | None = None,
    ) -> TransactionOutcome: ...
