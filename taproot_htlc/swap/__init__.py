"""
Swap settlement for taproot_htlc.

Binds a contract to a chain client and watches redeems for the preimage.
"""

from .settlement import TaprootHTLC
from .witness_watcher import find_preimage, extract_preimage, parse_witness_stack

__all__ = ["TaprootHTLC", "find_preimage", "extract_preimage", "parse_witness_stack"]
