"""
Tapscript leaf templates for the Taproot HTLC.

Three leaves are committed in every contract:

Redeem (responder reveals the secret):
    OP_SHA256 <payment_hash> OP_EQUALVERIFY <responder_pubkey> OP_CHECKSIG

Refund (initiator, after the relative timelock):
    <timelock> OP_CHECKSEQUENCEVERIFY OP_DROP <initiator_pubkey> OP_CHECKSIG

Instant refund (both parties, any time):
    <initiator_pubkey> OP_CHECKSIG <redeemer_pubkey> OP_CHECKSIGADD
    OP_2 OP_NUMEQUAL

Leaves are bitcoinutils Script objects; integers are pushed as minimally
encoded script numbers and hex strings as data.
"""

from typing import Optional, Tuple, Type

import coincurve
from bitcoinutils.script import Script

from ..errors import (
    ValidationError, InvalidPaymentHash, InvalidResponderPubkey,
    InvalidInitiatorPubkey, InvalidTimelock,
)
from ..core import MAX_RELATIVE_LOCKTIME


# OP_SHA256 <32> OP_EQUALVERIFY <32> OP_CHECKSIG
REDEEM_SCRIPT_SIZE = 69


def parse_x_only_pubkey(pubkey_hex: str,
                        error_cls: Type[ValidationError] = ValidationError) -> bytes:
    """
    Decode and validate a 32-byte x-only public key.

    Args:
        pubkey_hex: 64 hex characters
        error_cls: Exception raised on failure, so each role reports its own error

    Returns:
        32 key bytes
    """
    if not isinstance(pubkey_hex, str) or len(pubkey_hex) != 64:
        raise error_cls(f"expected 64 hex characters, got {pubkey_hex!r}")
    try:
        key = bytes.fromhex(pubkey_hex)
    except ValueError as e:
        raise error_cls(f"malformed hex {pubkey_hex!r}: {e}")
    try:
        # Any valid x coordinate lifts to an even-y point
        coincurve.PublicKey(b"\x02" + key)
    except ValueError as e:
        raise error_cls(f"not a point on secp256k1: {pubkey_hex} ({e})")
    return key


def decode_payment_hash(payment_hash_hex: str) -> bytes:
    """Decode a SHA256 payment hash, which must be exactly 32 bytes."""
    try:
        payment_hash = bytes.fromhex(payment_hash_hex)
    except (ValueError, TypeError) as e:
        raise InvalidPaymentHash(f"malformed hex {payment_hash_hex!r}: {e}")
    if len(payment_hash) != 32:
        raise InvalidPaymentHash(
            f"expected 32 bytes, got {len(payment_hash)}: {payment_hash_hex}"
        )
    return payment_hash


def redeem_script(payment_hash: str, responder_pubkey: str) -> Script:
    """
    Hashlock leaf: SHA256(preimage) must equal payment_hash, then a valid
    signature from the responder.
    """
    hash_bytes = decode_payment_hash(payment_hash)
    responder = parse_x_only_pubkey(responder_pubkey, InvalidResponderPubkey)
    return Script([
        "OP_SHA256", hash_bytes.hex(), "OP_EQUALVERIFY",
        responder.hex(), "OP_CHECKSIG",
    ])


def refund_script(timelock: int, initiator_pubkey: str) -> Script:
    """
    Timelock leaf: input age must reach `timelock` blocks (CSV), then a
    valid signature from the initiator.
    """
    if isinstance(timelock, bool) or not isinstance(timelock, int) \
            or not 0 < timelock <= MAX_RELATIVE_LOCKTIME:
        raise InvalidTimelock(timelock)
    initiator = parse_x_only_pubkey(initiator_pubkey, InvalidInitiatorPubkey)
    return Script([
        timelock, "OP_CHECKSEQUENCEVERIFY", "OP_DROP",
        initiator.hex(), "OP_CHECKSIG",
    ])


def instant_refund_script(initiator_pubkey: str, redeemer_pubkey: str) -> Script:
    """
    Cooperative 2-of-2 leaf. OP_CHECKSIG checks the initiator signature,
    OP_CHECKSIGADD adds the redeemer's result, and the count must be 2.
    """
    initiator = parse_x_only_pubkey(initiator_pubkey, InvalidInitiatorPubkey)
    redeemer = parse_x_only_pubkey(redeemer_pubkey, InvalidResponderPubkey)
    return Script([
        initiator.hex(), "OP_CHECKSIG",
        redeemer.hex(), "OP_CHECKSIGADD",
        "OP_2", "OP_NUMEQUAL",
    ])


def parse_redeem_script(script: bytes) -> Optional[Tuple[bytes, bytes]]:
    """
    Recognise a redeem leaf in raw witness bytes.

    Returns:
        (payment_hash, responder_pubkey) or None if the script is not a redeem leaf
    """
    if len(script) != REDEEM_SCRIPT_SIZE:
        return None
    ops = Script.from_raw(bytes(script)).get_script()
    if len(ops) != 5 or ops[0] != "OP_SHA256" or ops[2] != "OP_EQUALVERIFY" \
            or ops[4] != "OP_CHECKSIG":
        return None
    payment_hash, pubkey = ops[1], ops[3]
    if len(payment_hash) != 64 or len(pubkey) != 64:
        return None
    return bytes.fromhex(payment_hash), bytes.fromhex(pubkey)
