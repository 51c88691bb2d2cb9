"""
Schnorr signing for Taproot HTLC script-path spends.

Signatures are BIP-340 with zero auxiliary randomness, so the same key and
digest always give the same 64 bytes and settlement transactions can be
reproduced exactly.
"""

import logging
from typing import Tuple

import base58
import coincurve

from ..errors import InvalidPrivateKey
from .sighash import SIGHASH_DEFAULT

log = logging.getLogger(__name__)


WIF_PREFIX_MAINNET = 0x80
WIF_PREFIX_TESTNET = 0xef

ZERO_AUX_RAND = bytes(32)


def decode_wif(wif: str) -> Tuple[bytes, bool]:
    """
    Decode WIF to private key bytes.

    Returns:
        (32-byte secret, compressed flag)
    """
    try:
        decoded = base58.b58decode_check(wif)
    except ValueError as e:
        raise InvalidPrivateKey(f"Invalid WIF: {e}")

    if not decoded or decoded[0] not in (WIF_PREFIX_MAINNET, WIF_PREFIX_TESTNET):
        raise InvalidPrivateKey("Invalid WIF prefix")
    if len(decoded) == 34 and decoded[-1] == 0x01:
        return decoded[1:33], True
    if len(decoded) == 33:
        return decoded[1:33], False
    raise InvalidPrivateKey(f"Invalid WIF payload length: {len(decoded)}")


def parse_private_key(private_key: str) -> coincurve.PrivateKey:
    """
    Parse a private key given as 64 hex characters or WIF.

    Raises:
        InvalidPrivateKey: malformed encoding or secret outside [1, n-1]
    """
    if not isinstance(private_key, str) or not private_key:
        raise InvalidPrivateKey("Private key must be a non-empty string")

    if len(private_key) == 64:
        try:
            secret = bytes.fromhex(private_key)
        except ValueError as e:
            raise InvalidPrivateKey(f"Invalid private key hex: {e}")
    else:
        secret, _ = decode_wif(private_key)

    try:
        return coincurve.PrivateKey(secret)
    except ValueError as e:
        raise InvalidPrivateKey(f"Invalid private key: {e}")


def x_only_public_key(key: coincurve.PrivateKey) -> bytes:
    """32-byte x-only public key for a private key."""
    return key.public_key.format(compressed=True)[1:]


def sign_schnorr(digest: bytes, key: coincurve.PrivateKey,
                 sighash_type: int = SIGHASH_DEFAULT) -> bytes:
    """
    Sign a 32-byte sighash.

    Returns:
        64-byte signature, or 65 bytes with the sighash type appended when
        it is not SIGHASH_DEFAULT
    """
    if len(digest) != 32:
        raise ValueError(f"Sighash must be 32 bytes, got {len(digest)}")
    signature = key.sign_schnorr(digest, ZERO_AUX_RAND)
    if sighash_type != SIGHASH_DEFAULT:
        signature += bytes([sighash_type])
    return signature


def verify_schnorr(signature: bytes, digest: bytes, pubkey: bytes) -> bool:
    """Verify a BIP-340 signature against an x-only public key."""
    try:
        return coincurve.PublicKeyXOnly(pubkey).verify(signature[:64], digest)
    except ValueError:
        return False
