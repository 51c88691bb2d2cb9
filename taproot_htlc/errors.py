"""
Error taxonomy for the Taproot HTLC SDK.

Every failure surfaces as one of these named exceptions so callers can tell
"the contract parameters are invalid" apart from "the network is down" and
"input N could not be signed":

    HTLCError
    ├── ValidationError          bad caller input (also a ValueError)
    ├── TreeError                script tree could not be built
    ├── SighashError             signature digest failed for one input
    └── ChainError               Esplora HTTP failures
"""

from typing import Optional


class HTLCError(Exception):
    """Base class for all SDK errors."""


# =============================================================================
# Input validation
# =============================================================================

class ValidationError(HTLCError, ValueError):
    """Caller supplied malformed contract or settlement parameters."""


class InvalidHtlcType(ValidationError):
    def __init__(self, htlc_type):
        self.htlc_type = htlc_type
        super().__init__(f"Invalid HTLC type for P2TR address: {htlc_type}")


class InvalidTimelock(ValidationError):
    def __init__(self, timelock=None):
        self.timelock = timelock
        super().__init__(f"Timelock must be between 1 and 65535 blocks, got {timelock}")


class InvalidPaymentHash(ValidationError):
    pass


class InvalidResponderPubkey(ValidationError):
    pass


class InvalidInitiatorPubkey(ValidationError):
    pass


class InvalidPreimage(ValidationError):
    pass


class InvalidTxid(ValidationError):
    pass


class InvalidPrivateKey(ValidationError):
    pass


class InvalidAddress(ValidationError):
    pass


class InvalidFeeRate(ValidationError):
    pass


class InsufficientFunds(ValidationError):
    """Estimated fee meets or exceeds the total deposited value."""

    def __init__(self, total: int, fee: int):
        self.total = total
        self.fee = fee
        super().__init__(f"Fee {fee} sats leaves nothing from {total} sats of deposits")


class DepositMismatch(ValidationError):
    """A deposit is not locked to the contract address it claims to be."""


class TimelockNotExpired(ValidationError):
    """Refund attempted before the relative timelock has matured."""


# =============================================================================
# Script tree construction
# =============================================================================

class TreeError(HTLCError):
    """Base class for script tree failures."""


class InvalidNumsPoint(TreeError):
    pass


class TaprootBuildError(TreeError):
    """Finalization rejected the leaf set (incomplete or empty tree, bad tweak)."""

    def __init__(self, reason: str = "Failed to build Taproot spend info"):
        super().__init__(reason)


class TaprootBuilderError(TreeError):
    """Leaf insertion failed (depth bounds, DFS order, duplicate leaf)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Taproot builder error: {reason}")


class ControlBlockError(TreeError):
    def __init__(self, reason: str = "Failed to get control block"):
        super().__init__(reason)


# =============================================================================
# Signature pipeline
# =============================================================================

class SighashError(HTLCError):
    """Signature digest for a specific input could not be computed."""

    def __init__(self, index: int, cause: str):
        self.index = index
        self.cause = cause
        super().__init__(f"Failed to compute sighash for input {index}: {cause}")


# =============================================================================
# Ledger-query / broadcast collaborator
# =============================================================================

class ChainError(HTLCError):
    """Base class for Esplora client failures."""


class HttpRequestError(ChainError):
    """Transport-level failure (connection refused, timeout, DNS)."""


class HttpStatusError(ChainError):
    def __init__(self, status: int, message: str, url: Optional[str] = None):
        self.status = status
        self.message = message
        self.url = url
        super().__init__(f"HTTP {status} from {url or 'server'}: {message}")


class BroadcastError(HttpStatusError):
    def __init__(self, status: int, message: str):
        super().__init__(status, message)
        self.args = (f"Broadcast failed with status {status}: {message}",)


class ParseError(ChainError):
    """Response body could not be understood."""
