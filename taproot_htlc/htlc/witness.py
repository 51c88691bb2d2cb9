"""
Witness stacks for each Taproot HTLC spending path.

Items are listed first-pushed to last-pushed. The interpreter sees the last
script argument on top of the stack, so the argument consumed first by the
leaf script goes last (just before the script and control block):

    Redeem:         <sig> <preimage> <script> <control_block>
    Refund:         <sig> <script> <control_block>
    InstantRefund:  <redeemer_sig> <initiator_sig> <script> <control_block>

The instant-refund leaf runs OP_CHECKSIG against the initiator key first,
so the initiator signature must be the top argument.
"""

from bitcoinutils.script import Script
from bitcoinutils.transactions import TxWitnessInput

from ..core import SpendingPath


def redeem_witness(signature: bytes, preimage: bytes,
                   script: Script, control_block: bytes) -> TxWitnessInput:
    return TxWitnessInput([signature.hex(), preimage.hex(), script.to_hex(), control_block.hex()])


def refund_witness(signature: bytes, script: Script, control_block: bytes) -> TxWitnessInput:
    return TxWitnessInput([signature.hex(), script.to_hex(), control_block.hex()])


def instant_refund_witness(redeemer_signature: bytes, initiator_signature: bytes,
                           script: Script, control_block: bytes) -> TxWitnessInput:
    return TxWitnessInput([
        redeemer_signature.hex(), initiator_signature.hex(),
        script.to_hex(), control_block.hex(),
    ])


# Number of stack items per path
WITNESS_ITEM_COUNT = {
    SpendingPath.REDEEM: 4,
    SpendingPath.REFUND: 3,
    SpendingPath.INSTANT_REFUND: 4,
}
