"""
Chain clients for taproot_htlc.

Esplora provides UTXO lookup, fee estimates, tip height and broadcast.
"""

from .esplora import EsploraClient, EsploraConfig, RecommendedFees

__all__ = ["EsploraClient", "EsploraConfig", "RecommendedFees"]
