"""EIP-2612 permit authorization for gas-minimized deposits."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from web3 import AsyncWeb3

from ..errors import AuthorizationError, ChainReadError, SigningDeclined
from ..interfaces.chain import ChainClient
from ..interfaces.signer import Signer
from ..models import PermitAuthorization

logger = logging.getLogger(__name__)

PERMIT_VERSION = "1"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

PERMIT_TYPE = [
    {"name": "owner", "type": "address"},
    {"name": "spender", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


def build_permit_typed_data(
    *,
    token_name: str,
    chain_id: int,
    token: str,
    owner: str,
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
) -> dict[str, Any]:
    """Full EIP-712 message for ``Permit`` as signed by eth_signTypedData_v4."""
    return {
        "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, "Permit": PERMIT_TYPE},
        "primaryType": "Permit",
        "domain": {
            "name": token_name,
            "version": PERMIT_VERSION,
            "chainId": chain_id,
            "verifyingContract": AsyncWeb3.to_checksum_address(token),
        },
        "message": {
            "owner": AsyncWeb3.to_checksum_address(owner),
            "spender": AsyncWeb3.to_checksum_address(spender),
            "value": value,
            "nonce": nonce,
            "deadline": deadline,
        },
    }


def split_signature(signature: str | bytes) -> tuple[int, bytes, bytes]:
    """Split a 65-byte ``r || s || v`` signature into ``(v, r, s)``."""
    raw = bytes.fromhex(signature.removeprefix("0x")) if isinstance(signature, str) else signature
    if len(raw) != 65:
        raise AuthorizationError(f"Expected a 65-byte signature, got {len(raw)} bytes")
    r, s, v = raw[:32], raw[32:64], raw[64]
    if v < 27:
        v += 27
    if v not in (27, 28):
        raise AuthorizationError(f"Invalid signature recovery id {v}")
    return v, r, s


class PermitAuthorizer:
    """Produce a one-shot permit letting the automation account pull the deposit."""

    def __init__(
        self,
        chain: ChainClient,
        validity_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain = chain
        self._validity_seconds = validity_seconds
        self._clock = clock

    async def authorize(
        self, signer: Signer, spender: str, amount: int, token: str
    ) -> PermitAuthorization:
        """Read name/nonce, sign the permit and return its components.

        Raises:
            ChainReadError: token name, nonce or chain id could not be read.
            SigningDeclined: the signer rejected the request.
        """
        owner = signer.address
        try:
            token_name = await self._chain.token_name(token)
            nonce = await self._chain.token_nonce(token, owner)
            chain_id = await self._chain.chain_id()
        except ChainReadError:
            raise
        except Exception as e:
            raise ChainReadError(f"Permit lookup failed: {e}") from e

        deadline = int(self._clock()) + self._validity_seconds
        typed_data = build_permit_typed_data(
            token_name=token_name,
            chain_id=chain_id,
            token=token,
            owner=owner,
            spender=spender,
            value=amount,
            nonce=nonce,
            deadline=deadline,
        )

        logger.info("Requesting permit signature (nonce %d, deadline %d)", nonce, deadline)
        try:
            signature = await signer.sign_typed_data(typed_data)
        except SigningDeclined:
            raise
        except Exception as e:
            raise SigningDeclined(f"Signature request rejected: {e}") from e

        v, r, s = split_signature(signature)
        return PermitAuthorization(
            owner=owner,
            spender=spender,
            token=token,
            amount=amount,
            nonce=nonce,
            deadline=deadline,
            v=v,
            r=r,
            s=s,
        )
