"""
taproot_htlc - Taproot HTLC Atomic Swap Library

Builds, funds and settles Bitcoin hash time-locked contracts committed in a
Taproot script tree (redeem / refund / instant-refund leaves under a NUMS
internal key).

Usage:
    from taproot_htlc import ContractTerms, Network, generate_address, redeem

    terms = ContractTerms(initiator_pubkey, responder_pubkey,
                          timelock=144, amount=10000, payment_hash=payment_hash)
    address, tree = generate_address(terms, Network.TESTNET)

    # Pure transaction builder
    tx = redeem(terms, preimage, responder_key, deposits, destination, 3, Network.TESTNET)

    # Or against a live chain
    htlc = TaprootHTLC.from_config(terms, HTLCConfig.from_env())
    txid = await htlc.redeem(preimage, responder_key, destination)
"""

from .core import (
    HTLCType,
    Network,
    SpendingPath,
    ContractTerms,
    Deposit,
    DepositStatus,
    generate_secret,
    verify_preimage,
    btc_to_sats,
    sats_to_btc,
    NUMS_POINT,
)
from .errors import HTLCError, ValidationError, TreeError, SighashError, ChainError
from .config import HTLCConfig, configure_logging

from .htlc.p2tr import (
    ContractTree,
    generate_address,
    get_spending_info,
    redeem,
    refund,
    instant_refund,
)
from .htlc.tx import estimate_fee

from .chains.esplora import EsploraClient, EsploraConfig, RecommendedFees

from .swap.settlement import TaprootHTLC
from .swap.witness_watcher import find_preimage, extract_preimage

__version__ = "0.1.0"
__all__ = [
    # Core types
    "HTLCType",
    "Network",
    "SpendingPath",
    "ContractTerms",
    "Deposit",
    "DepositStatus",
    "NUMS_POINT",
    # Utilities
    "generate_secret",
    "verify_preimage",
    "btc_to_sats",
    "sats_to_btc",
    # Errors
    "HTLCError",
    "ValidationError",
    "TreeError",
    "SighashError",
    "ChainError",
    # Config
    "HTLCConfig",
    "configure_logging",
    # Contract
    "ContractTree",
    "generate_address",
    "get_spending_info",
    "redeem",
    "refund",
    "instant_refund",
    "estimate_fee",
    # Client
    "EsploraClient",
    "EsploraConfig",
    "RecommendedFees",
    # Swap
    "TaprootHTLC",
    "find_preimage",
    "extract_preimage",
]
