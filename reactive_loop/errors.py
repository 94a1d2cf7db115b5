"""Error taxonomy for the leverage loop engine."""
from __future__ import annotations


class LoopEngineError(Exception):
    """Base class for all engine failures."""


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(LoopEngineError):
    """The off-chain permit could not be produced or is no longer usable."""


class SigningDeclined(AuthorizationError):
    """The signing capability rejected the request or the user cancelled."""


class StaleNonce(AuthorizationError):
    """The permit's nonce was already committed or the token nonce has moved past it."""

    def __init__(self, owner: str, nonce: int) -> None:
        self.owner = owner
        self.nonce = nonce
        super().__init__(f"Permit nonce {nonce} for {owner} was already submitted")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class ChainReadError(LoopEngineError):
    """A read-only call against the chain failed."""


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class SubmissionError(LoopEngineError):
    """A state-changing transaction could not be executed."""

    def __init__(self, message: str, tx_ref: str | None = None) -> None:
        self.tx_ref = tx_ref
        super().__init__(message)


class TransactionReverted(SubmissionError):
    """The transaction reverted on-chain (or during gas estimation)."""

    def __init__(self, reason: str, tx_ref: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Transaction reverted: {reason}", tx_ref=tx_ref)


class NetworkMismatch(SubmissionError):
    """The connected chain is not the configured primary chain."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Connected to chain {actual}, expected chain {expected}; "
            "switch networks before retrying"
        )


class InsufficientBalance(SubmissionError):
    """The wallet does not hold enough of the token for the requested amount."""


# ---------------------------------------------------------------------------
# Observation / configuration / liveness
# ---------------------------------------------------------------------------


class ObservationError(LoopEngineError):
    """Event subscription or position polling failed repeatedly."""


class ConfigurationError(LoopEngineError):
    """The automation account is wired to a different automation caller."""


class AutomationTimeoutError(LoopEngineError, TimeoutError):
    """No loop iteration arrived within the watchdog window."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"No automation response within {timeout_seconds:g}s of deposit"
        )
