"""Local-key signing capability, borrowed for the span of one command."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data

from .errors import SigningDeclined

logger = logging.getLogger(__name__)


class LocalAccountSigner:
    """Signs typed data and transactions with an in-memory eth-account key."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> str:
        try:
            signable = encode_typed_data(full_message=typed_data)
            signed = self._account.sign_message(signable)
        except (TypeError, ValueError) as e:
            raise SigningDeclined(f"Typed data could not be signed: {e}") from e
        return "0x" + bytes(signed.signature).hex()

    async def sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)

    def _forget(self) -> None:
        self._account = None  # type: ignore[assignment]


@asynccontextmanager
async def borrow_signer(private_key: str) -> AsyncIterator[LocalAccountSigner]:
    """Yield a signer whose key reference is dropped when the block exits."""
    if not private_key:
        raise SigningDeclined("No signing key configured for this wallet")
    signer = LocalAccountSigner(private_key)
    try:
        yield signer
    finally:
        signer._forget()
        logger.debug("Signing capability released")
