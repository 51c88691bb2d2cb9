"""
Core types and constants for the Taproot HTLC SDK.
"""

import hashlib
import secrets
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any


class HTLCType(Enum):
    """Script-tree layouts a contract can be built with."""
    P2TR2 = "p2tr2"     # Taproot, redeem / refund / instant-refund leaves
    P2WSH2 = "p2wsh2"   # Legacy segwit v0 IF/ELSE script (not built here)


class Network(Enum):
    """Bitcoin network selector."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def hrp(self) -> str:
        """Bech32 human-readable part for segwit addresses."""
        return {
            Network.MAINNET: "bc",
            Network.TESTNET: "tb",
            Network.SIGNET: "tb",
            Network.REGTEST: "bcrt",
        }[self]

    @property
    def is_mainnet(self) -> bool:
        return self is Network.MAINNET

    @classmethod
    def parse(cls, value) -> "Network":
        """Accept a Network or its name ("mainnet", "testnet", ...)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown network: {value!r}")


class SpendingPath(Enum):
    """The three mutually exclusive ways to spend a contract output."""
    REDEEM = "redeem"
    REFUND = "refund"
    INSTANT_REFUND = "instant_refund"

    @property
    def witness_size(self) -> int:
        """Per-input witness size estimate (bytes) used for fee estimation."""
        return WITNESS_SIZE_ESTIMATES[self]


@dataclass(frozen=True)
class ContractTerms:
    """
    Public terms of a Taproot HTLC, agreed off-chain by both parties.

    Both sides derive the same script tree and address from these fields,
    so the value is immutable. Field validation happens when the tree is
    built, which is where each malformed field is reported.
    """
    initiator_pubkey: str       # x-only pubkey (hex, 64 chars)
    responder_pubkey: str       # x-only pubkey (hex, 64 chars)
    timelock: int               # Relative locktime in blocks (CSV)
    amount: int                 # Expected deposit in sats
    payment_hash: str           # SHA256 of the secret (hex, 64 chars)
    htlc_type: HTLCType = HTLCType.P2TR2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initiator_pubkey": self.initiator_pubkey,
            "responder_pubkey": self.responder_pubkey,
            "timelock": self.timelock,
            "amount": self.amount,
            "payment_hash": self.payment_hash,
            "htlc_type": self.htlc_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContractTerms":
        return cls(
            initiator_pubkey=data["initiator_pubkey"],
            responder_pubkey=data["responder_pubkey"],
            timelock=int(data["timelock"]),
            amount=int(data["amount"]),
            payment_hash=data["payment_hash"],
            htlc_type=HTLCType(data.get("htlc_type", HTLCType.P2TR2.value)),
        )


@dataclass(frozen=True)
class DepositStatus:
    """Confirmation status of a deposit as reported by Esplora."""
    confirmed: bool
    block_height: Optional[int] = None
    block_hash: Optional[str] = None
    block_time: Optional[int] = None

    @classmethod
    def from_esplora(cls, data: Optional[Dict[str, Any]]) -> "DepositStatus":
        """Parse an Esplora `status` object; a missing one means unconfirmed."""
        data = data or {}
        height = data.get("block_height")
        return cls(
            confirmed=bool(data.get("confirmed", False)),
            block_height=None if height is None else int(height),
            block_hash=data.get("block_hash"),
            block_time=data.get("block_time"),
        )

    def confirmations(self, tip_height: int) -> int:
        if not self.confirmed or self.block_height is None:
            return 0
        return max(tip_height - self.block_height + 1, 0)


@dataclass(frozen=True)
class Deposit:
    """An output locked to the contract address, spent once as an input."""
    txid: str
    vout: int
    value: int                  # sats
    status: DepositStatus = field(default_factory=lambda: DepositStatus(confirmed=False))

    @classmethod
    def from_esplora(cls, data: Dict[str, Any]) -> "Deposit":
        return cls(
            txid=data["txid"],
            vout=int(data["vout"]),
            value=int(data["value"]),
            status=DepositStatus.from_esplora(data.get("status")),
        )

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


# =============================================================================
# HTLC Utilities
# =============================================================================

def generate_secret() -> tuple[str, str]:
    """
    Generate a random secret and its SHA256 payment hash.

    Returns:
        (secret_hex, payment_hash_hex)
    """
    secret = secrets.token_bytes(32)
    payment_hash = hashlib.sha256(secret).digest()
    return secret.hex(), payment_hash.hex()


def verify_preimage(preimage_hex: str, payment_hash_hex: str) -> bool:
    """
    Verify that SHA256(preimage) == payment_hash.

    Returns:
        True if valid, False for a mismatch or malformed hex
    """
    try:
        preimage = bytes.fromhex(preimage_hex)
        expected = bytes.fromhex(payment_hash_hex)
        actual = hashlib.sha256(preimage).digest()
        return actual == expected
    except (ValueError, TypeError):
        return False


def sats_to_btc(sats: int) -> float:
    """Convert satoshis to BTC."""
    return sats / 100_000_000


def btc_to_sats(btc: float) -> int:
    """Convert BTC to satoshis."""
    return round(btc * 100_000_000)


# =============================================================================
# Constants
# =============================================================================

# BIP-341 NUMS point: H = lift_x(SHA256(G)), no known discrete log.
# Used as the internal key of every contract so the key path is unspendable.
NUMS_POINT = "50929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"

# Height-based relative locks are 16 bits (BIP-68)
MAX_RELATIVE_LOCKTIME = 0xffff

# Witness size estimates per input (upper bounds):
# count byte + 64/65-byte sigs + 33-byte preimage push + 81-byte script
# allowance + 34-byte control block allowance.
WITNESS_SIZE_ESTIMATES = {
    SpendingPath.REDEEM: 1 + 65 + 33 + 81 + 34,
    SpendingPath.REFUND: 1 + 65 + 81 + 34,
    SpendingPath.INSTANT_REFUND: 1 + 65 + 65 + 81 + 34,
}
