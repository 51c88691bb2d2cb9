"""
Address encoding for the Taproot HTLC.

Deposit addresses are segwit v1 (P2TR, bech32m, BIP-350). Destinations may
be any standard address: segwit v0 (bech32, BIP-173), segwit v1+ (bech32m)
or legacy base58check P2PKH / P2SH.
"""

import logging
from typing import Optional, Tuple

import base58
from bitcoinutils import bech32
from bitcoinutils.script import Script

from ..core import Network
from ..errors import InvalidAddress

log = logging.getLogger(__name__)


# Base58 version bytes: (p2pkh, p2sh)
BASE58_PREFIXES = {
    Network.MAINNET: (0x00, 0x05),
    Network.TESTNET: (0x6f, 0xc4),
    Network.SIGNET: (0x6f, 0xc4),
    Network.REGTEST: (0x6f, 0xc4),
}


def encode_segwit_address(hrp: str, version: int, program: bytes) -> str:
    """Encode a witness program as a bech32 (v0) or bech32m (v1+) address."""
    address = bech32.encode(hrp, version, program)
    if address is None:
        raise InvalidAddress(f"Cannot encode witness v{version} program of {len(program)} bytes")
    return address


def decode_segwit_address(hrp: str, address: str) -> Optional[Tuple[int, bytes]]:
    """
    Decode a segwit address for the expected hrp. The checksum variant
    must match the version: bech32 for v0, bech32m for v1 and up.

    Returns:
        (witness_version, program) or None if invalid
    """
    version, program = bech32.decode(hrp, address)
    if version is None:
        return None
    return version, bytes(program)


def p2tr_address(output_key: bytes, network: Network) -> str:
    """Taproot address for a tweaked x-only output key."""
    network = Network.parse(network)
    address = encode_segwit_address(network.hrp, 1, output_key)
    log.info(f"Generated P2TR address: {address}")
    return address


def address_to_script_pubkey(address: str, network: Network) -> Script:
    """
    Convert a destination address to its scriptPubKey.

    Raises:
        InvalidAddress: unparseable, wrong network, or unsupported type
    """
    network = Network.parse(network)
    if not isinstance(address, str) or not address:
        raise InvalidAddress(f"Invalid address: {address!r}")

    if address.lower().startswith(network.hrp + "1"):
        decoded = decode_segwit_address(network.hrp, address)
        if decoded is None:
            raise InvalidAddress(f"Invalid segwit address for {network.value}: {address}")
        version, program = decoded
        return Script([f"OP_{version}", program.hex()])

    try:
        payload = base58.b58decode_check(address)
    except ValueError as e:
        raise InvalidAddress(f"Invalid address {address} for {network.value}: {e}")
    if len(payload) != 21:
        raise InvalidAddress(f"Invalid base58 payload length {len(payload)}: {address}")

    p2pkh_prefix, p2sh_prefix = BASE58_PREFIXES[network]
    version, body = payload[0], payload[1:]
    if version == p2pkh_prefix:
        return Script(["OP_DUP", "OP_HASH160", body.hex(), "OP_EQUALVERIFY", "OP_CHECKSIG"])
    if version == p2sh_prefix:
        return Script(["OP_HASH160", body.hex(), "OP_EQUAL"])
    raise InvalidAddress(f"Address {address} is not valid on {network.value}")
