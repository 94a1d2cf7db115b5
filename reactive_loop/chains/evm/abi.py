"""Minimal ABIs for the permit token, the leverage account and the reactive caller."""
from __future__ import annotations

from typing import Any

PERMIT_TOKEN_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "name",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "owner", "type": "address"}],
        "name": "nonces",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

LEVERAGE_ACCOUNT_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "getStatus",
        "outputs": [
            {"internalType": "uint256", "name": "collateral", "type": "uint256"},
            {"internalType": "uint256", "name": "debt", "type": "uint256"},
            {"internalType": "uint256", "name": "ltv", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "rscCaller",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "_rscCaller", "type": "address"}],
        "name": "setRSCCaller",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"},
            {"internalType": "uint8", "name": "v", "type": "uint8"},
            {"internalType": "bytes32", "name": "r", "type": "bytes32"},
            {"internalType": "bytes32", "name": "s", "type": "bytes32"},
        ],
        "name": "depositWithPermit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "repayPartial",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "withdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "collateralToken", "type": "address"},
            {"internalType": "address", "name": "debtToken", "type": "address"},
        ],
        "name": "fullClosePosition",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "currentLTV", "type": "uint256"},
        ],
        "name": "Deposited",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "uint256", "name": "borrowed", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "newCollateral", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "currentLTV", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "iterationId", "type": "uint256"},
        ],
        "name": "LoopStepExecuted",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "uint256", "name": "debtRepaid", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "collateralReturned", "type": "uint256"},
        ],
        "name": "PositionClosed",
        "type": "event",
    },
]

LOOP_EVENT_NAMES = ("Deposited", "LoopStepExecuted", "PositionClosed")

# Reactive contract on the automation chain; resume() restores its
# subscriptions to the account's events after a pause.
AUTOMATION_CALLER_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "resume",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]
