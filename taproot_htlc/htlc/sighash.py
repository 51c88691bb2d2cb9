"""
BIP-341 signature hash for Taproot script-path spends.

https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki#common-signature-message
https://github.com/bitcoin/bips/blob/master/bip-0342.mediawiki#signature-validation

Unlike BIP-143, the digest commits to the amounts and scriptPubKeys of every
input being spent, so the full prevout list is required for each input.
The message itself is built by bitcoinutils; this module checks the
arguments it does not.
"""

import logging
import struct
from typing import List

from bitcoinutils.constants import (
    TAPROOT_SIGHASH_ALL, SIGHASH_ALL, SIGHASH_NONE, SIGHASH_SINGLE, SIGHASH_ANYONECANPAY,
)
from bitcoinutils.script import Script
from bitcoinutils.transactions import Transaction, TxOutput

from ..errors import SighashError

log = logging.getLogger(__name__)


SIGHASH_DEFAULT = TAPROOT_SIGHASH_ALL

VALID_SIGHASH_TYPES = (
    SIGHASH_DEFAULT, SIGHASH_ALL, SIGHASH_NONE, SIGHASH_SINGLE,
    SIGHASH_ALL | SIGHASH_ANYONECANPAY,
    SIGHASH_NONE | SIGHASH_ANYONECANPAY,
    SIGHASH_SINGLE | SIGHASH_ANYONECANPAY,
)

# spend_type = ext_flag * 2; script path
EXT_FLAG_SCRIPT_PATH = 1


def _check_arguments(tx: Transaction, input_index: int, prevouts: List[TxOutput],
                     script: Script, sighash_type: int):
    if sighash_type not in VALID_SIGHASH_TYPES:
        raise SighashError(input_index, f"invalid sighash type {sighash_type:#x}")
    if not isinstance(input_index, int) or not 0 <= input_index < len(tx.inputs):
        raise SighashError(input_index, f"input index out of range (tx has {len(tx.inputs)} inputs)")
    if len(prevouts) != len(tx.inputs):
        raise SighashError(
            input_index,
            f"prevouts count {len(prevouts)} does not match input count {len(tx.inputs)}",
        )
    if not isinstance(script, Script):
        raise SighashError(input_index, f"leaf script must be a Script, got {type(script).__name__}")
    if sighash_type & 0x03 == SIGHASH_SINGLE and input_index >= len(tx.outputs):
        raise SighashError(input_index, "SIGHASH_SINGLE without a corresponding output")


def taproot_script_spend_sighash(tx: Transaction, input_index: int, prevouts: List[TxOutput],
                                 script: Script, sighash_type: int = SIGHASH_DEFAULT) -> bytes:
    """
    Compute the 32-byte digest a script-path Schnorr signature commits to.

    Args:
        tx: Unsigned transaction (witnesses are ignored)
        input_index: Input being signed
        prevouts: Outputs spent by every input, in input order
        script: Tapscript leaf being executed
        sighash_type: SIGHASH_DEFAULT unless the caller needs otherwise

    Returns:
        32-byte sighash

    Raises:
        SighashError: unknown sighash type, index out of range, prevout
            count mismatch, or SIGHASH_SINGLE without a matching output
    """
    try:
        _check_arguments(tx, input_index, prevouts, script, sighash_type)
        sighash = tx.get_transaction_taproot_digest(
            input_index,
            [prevout.script_pubkey for prevout in prevouts],
            [prevout.amount for prevout in prevouts],
            ext_flag=EXT_FLAG_SCRIPT_PATH,
            script=script,
            sighash=sighash_type,
        )
    except SighashError as e:
        log.error(f"Failed to compute Taproot sighash for input {input_index}: {e.cause}")
        raise
    except (ValueError, OverflowError, struct.error) as e:
        log.error(f"Failed to compute Taproot sighash for input {input_index}: {e}")
        raise SighashError(input_index, str(e))
    log.debug(f"Computed Taproot sighash for input {input_index}")
    return sighash
