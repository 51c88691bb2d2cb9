"""
Transaction building and fee estimation.

Transactions are bitcoinutils objects with the segwit marker always set, so
unsigned and signed transactions serialize the same way (BIP-144):

    version | 0x00 0x01 | vin | vout | witnesses | locktime

Witness stacks live on Transaction.witnesses, one TxWitnessInput per input.
"""

import logging
from typing import List, Optional

from bitcoinutils.constants import DEFAULT_TX_SEQUENCE, TYPE_RELATIVE_TIMELOCK
from bitcoinutils.script import Script
from bitcoinutils.transactions import (
    Sequence, Transaction, TxInput, TxOutput, TxWitnessInput,
)

from ..core import MAX_RELATIVE_LOCKTIME
from ..errors import InvalidTxid, InvalidTimelock, InvalidFeeRate

log = logging.getLogger(__name__)


# =============================================================================
# Builders
# =============================================================================

def build_input(txid: str, vout: int, relative_locktime: Optional[int] = None) -> TxInput:
    """
    Create a transaction input.

    Args:
        txid: Previous transaction id (64 hex chars)
        vout: Previous output index
        relative_locktime: Block count for a CSV-locked spend, None for
            an unlocked input (RBF enabled)
    """
    if not isinstance(txid, str) or len(txid) != 64:
        raise InvalidTxid(f"Invalid Txid: {txid!r}")
    try:
        bytes.fromhex(txid)
    except ValueError as e:
        raise InvalidTxid(f"Invalid Txid {txid!r}: {e}")
    if not 0 <= vout <= 0xffffffff:
        raise InvalidTxid(f"Invalid output index {vout} for {txid}")

    if relative_locktime is None:
        sequence = DEFAULT_TX_SEQUENCE
    else:
        if isinstance(relative_locktime, bool) or not isinstance(relative_locktime, int) \
                or not 0 < relative_locktime <= MAX_RELATIVE_LOCKTIME:
            raise InvalidTimelock(relative_locktime)
        # BIP-68 height lock: type flag clear, value in the low 16 bits
        sequence = Sequence(TYPE_RELATIVE_TIMELOCK, relative_locktime).for_input_sequence()
    log.debug(f"Created transaction input for outpoint: {txid}:{vout}")
    return TxInput(txid, vout, sequence=sequence)


def build_output(value: int, script_pubkey: Script) -> TxOutput:
    log.debug(f"Created transaction output with value {value} to script {script_pubkey.to_hex()}")
    return TxOutput(value, script_pubkey)


def build_transaction(inputs: List[TxInput], outputs: List[TxOutput]) -> Transaction:
    tx = Transaction(inputs, outputs, has_segwit=True,
                     witnesses=[TxWitnessInput([]) for _ in inputs])
    log.info(f"Built transaction with {len(inputs)} inputs and {len(outputs)} outputs")
    return tx


# =============================================================================
# Fee estimation
# =============================================================================

def estimate_fee(input_count: int, output_count: int,
                 witness_size_per_input: int, fee_rate: int) -> int:
    """
    Estimate the fee for a script-path spend before it is signed.

    base_size counts version+marker/flag (6), 40 bytes per input, the
    output count byte, 43 bytes per output and the locktime (4).

    Args:
        input_count: Number of inputs
        output_count: Number of outputs
        witness_size_per_input: Predicted witness bytes per input
        fee_rate: sat/vbyte

    Returns:
        Fee in sats
    """
    if isinstance(fee_rate, bool) or not isinstance(fee_rate, int) or fee_rate < 0:
        raise InvalidFeeRate(f"Fee rate must be a non-negative integer sat/vB, got {fee_rate!r}")
    base_size = 6 + input_count * 40 + 1 + output_count * 43 + 4
    weight = base_size * 4 + input_count * witness_size_per_input
    vsize = (weight + 3) // 4
    return vsize * fee_rate
