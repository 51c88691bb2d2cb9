"""
Taproot script tree construction (BIP-341).

Leaves are added depth-first with an explicit depth, the same way the
reference TaprootBuilder works, so the resulting merkle root (and therefore
the address) depends only on the scripts and their depths:

    builder = TaprootBuilder()
    builder.add_leaf(1, redeem)
    builder.add_leaf(2, refund)
    builder.add_leaf(2, instant_refund)
    info = builder.finalize(NUMS)

            root
           /    \\
      redeem    branch
                /    \\
            refund  instant_refund

The builder only checks the shape and folds the leaves into the nested list
form bitcoinutils expects ([redeem, [refund, instant_refund]]); hashing,
tweaking and control blocks are bitcoinutils'.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import coincurve
from bitcoinutils.keys import PublicKey
from bitcoinutils.script import Script
from bitcoinutils.utils import (
    ControlBlock, b_to_i, get_tag_hashed_merkle_root, prepend_compact_size,
    tagged_hash, tapbranch_tagged_hash, tapleaf_tagged_hash, tweak_taproot_pubkey,
)

from ..errors import TaprootBuildError, TaprootBuilderError, InvalidNumsPoint

log = logging.getLogger(__name__)


TAPROOT_LEAF_TAPSCRIPT = 0xc0
TAPROOT_LEAF_MASK = 0xfe
# BIP-341: control block holds at most 128 merkle path nodes
TAPROOT_CONTROL_MAX_NODE_COUNT = 128
TAPROOT_CONTROL_BASE_SIZE = 33
TAPROOT_CONTROL_NODE_SIZE = 32

# A leaf Script or a two-element list of subtrees
ScriptTree = Union[Script, list]


class TaprootBuilder:
    """
    Depth-first Taproot tree builder.

    `_branch[d]` holds the pending subtree at depth d waiting for its sibling.
    """

    def __init__(self):
        self._branch: List[Optional[ScriptTree]] = []
        self._leaves: List[Script] = []

    def add_leaf(self, depth: int, script: Script) -> "TaprootBuilder":
        """
        Insert a tapscript leaf at `depth`. Leaves must arrive in depth-first order.

        Raises:
            TaprootBuilderError: depth out of range, not DFS order,
                over-complete tree, or duplicate leaf
        """
        if not 0 <= depth <= TAPROOT_CONTROL_MAX_NODE_COUNT:
            raise TaprootBuilderError(f"invalid merkle tree depth {depth}")
        if not isinstance(script, Script):
            raise TaprootBuilderError(f"leaf must be a Script, got {type(script).__name__}")
        raw = script.to_bytes()
        if any(leaf.to_bytes() == raw for leaf in self._leaves):
            raise TaprootBuilderError(f"duplicate leaf {raw.hex()}")
        if depth + 1 < len(self._branch):
            raise TaprootBuilderError("leaves not provided in depth-first order")

        node: ScriptTree = script
        while len(self._branch) == depth + 1:
            sibling = self._branch.pop()
            if sibling is None:
                self._branch.append(None)
                break
            if depth == 0:
                raise TaprootBuilderError("tree is already complete")
            # Left-first, so leaf indexes follow insertion order
            node = [sibling, node]
            depth -= 1

        if len(self._branch) < depth + 1:
            self._branch.extend([None] * (depth + 1 - len(self._branch)))
        self._branch[depth] = node
        self._leaves.append(script)
        return self

    def is_finalizable(self) -> bool:
        return len(self._branch) == 1 and self._branch[0] is not None

    def finalize(self, internal_key: bytes) -> "TaprootSpendInfo":
        """
        Close the tree and commit it under `internal_key`.

        Raises:
            InvalidNumsPoint: internal key is not a valid x-only point
            TaprootBuildError: tree is empty or has unfilled branches
        """
        if len(internal_key) != 32:
            raise InvalidNumsPoint(f"expected 32-byte x-only key, got {len(internal_key)}")
        try:
            coincurve.PublicKey(b"\x02" + internal_key)
        except ValueError as e:
            raise InvalidNumsPoint(str(e))

        if not self.is_finalizable():
            raise TaprootBuildError("script tree is incomplete")

        tree = self._branch[0]
        pubkey = PublicKey(internal_key.hex())
        try:
            output_key_hex, parity = pubkey.to_taproot_hex(tree)
        except (TypeError, ValueError) as e:
            raise TaprootBuildError(f"tweak failed: {e}")

        return TaprootSpendInfo(
            internal_key=internal_key,
            merkle_root=get_tag_hashed_merkle_root(tree),
            output_key=bytes.fromhex(output_key_hex),
            output_key_parity=parity,
            tree=tree,
            leaves=tuple(leaf.to_bytes() for leaf in self._leaves),
        )


# =============================================================================
# Spend info / control blocks
# =============================================================================

@dataclass(frozen=True)
class TaprootSpendInfo:
    """Result of finalizing a script tree."""
    internal_key: bytes
    merkle_root: bytes
    output_key: bytes
    output_key_parity: bool
    tree: ScriptTree
    leaves: Tuple[bytes, ...]   # raw leaf scripts in traversal order

    def __hash__(self):
        return hash((self.internal_key, self.merkle_root, self.output_key))

    @property
    def script_pubkey(self) -> Script:
        """OP_1 <32-byte output key>"""
        return Script(["OP_1", self.output_key.hex()])

    def leaf_hash(self, script: Script) -> bytes:
        return tapleaf_tagged_hash(script)

    def control_block(self, script: Script) -> Optional[ControlBlock]:
        """Control block for `script`, or None if the leaf is not in the tree."""
        try:
            index = self.leaves.index(script.to_bytes())
        except ValueError:
            return None
        return ControlBlock(PublicKey(self.internal_key.hex()), self.tree, index,
                            is_odd=self.output_key_parity)


def verify_control_block(output_key: bytes, script: bytes, control_block: bytes) -> bool:
    """
    Recompute the commitment from a raw control block and leaf script and
    check it matches `output_key` (the script-path check a validating node runs).
    """
    extra = len(control_block) - TAPROOT_CONTROL_BASE_SIZE
    if (extra < 0 or extra % TAPROOT_CONTROL_NODE_SIZE
            or extra // TAPROOT_CONTROL_NODE_SIZE > TAPROOT_CONTROL_MAX_NODE_COUNT):
        log.warning(f"Control block rejected: invalid size {len(control_block)}")
        return False

    leaf_version = control_block[0] & TAPROOT_LEAF_MASK
    internal_key = control_block[1:TAPROOT_CONTROL_BASE_SIZE]
    try:
        coincurve.PublicKey(b"\x02" + internal_key)
    except ValueError as e:
        log.warning(f"Control block rejected: bad internal key ({e})")
        return False

    node = tagged_hash(bytes([leaf_version]) + prepend_compact_size(script), "TapLeaf")
    for i in range(TAPROOT_CONTROL_BASE_SIZE, len(control_block), TAPROOT_CONTROL_NODE_SIZE):
        node = tapbranch_tagged_hash(node, control_block[i:i + TAPROOT_CONTROL_NODE_SIZE])

    tweak = b_to_i(tagged_hash(internal_key + node, "TapTweak"))
    tweaked, parity = tweak_taproot_pubkey(PublicKey(internal_key.hex()).to_bytes(), tweak)
    return tweaked[:32] == output_key and parity == bool(control_block[0] & 1)
