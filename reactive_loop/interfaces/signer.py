"""Signer protocol: the signing capability a session borrows."""
from typing import Any, Protocol


class Signer(Protocol):
    """Signs on behalf of one address; holds no key material of its own."""

    @property
    def address(self) -> str: ...

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> str: ...

    async def sign_transaction(self, transaction: dict[str, Any]) -> bytes: ...
