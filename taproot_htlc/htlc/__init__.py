"""
Taproot HTLC construction.

Pure, offline building blocks on top of bitcoinutils:
- script:  leaf script templates
- taptree: depth-first script tree builder, spend info, control block checks
- address: bech32m P2TR addresses and destination scriptPubKeys
- tx:      transaction building and fee estimation
- sighash: BIP-341/342 script-path signature hashes
- signer:  BIP-340 Schnorr signing (coincurve)
- p2tr:    contract tree, address and settlement transactions
"""

from .p2tr import (
    ContractTree,
    build_contract_tree,
    generate_address,
    get_spending_info,
    redeem,
    refund,
    instant_refund,
)

__all__ = [
    "ContractTree",
    "build_contract_tree",
    "generate_address",
    "get_spending_info",
    "redeem",
    "refund",
    "instant_refund",
]
