"""
Witness Watcher - extracts the preimage from Taproot HTLC redeem spends.

Once the responder redeems, the secret is public in the spending input's
witness. The initiator (or anyone holding the terms) can read it back and
use it on the other leg of the swap.

Redeem witness layout:
    [0] <signature>
    [1] <preimage>
    [2] <redeem leaf script>
    [3] <control block>
"""

import hashlib
import logging
import struct
from typing import Optional, List, Dict, Any

from bitcoinutils.utils import parse_compact_size

from ..chains.esplora import EsploraClient
from ..htlc.script import parse_redeem_script

log = logging.getLogger(__name__)


def parse_witness_stack(witness_hex: str) -> List[bytes]:
    """
    Parse a serialized witness (item count + length-prefixed items).

    Returns list of witness items.

    Raises:
        ValueError: malformed hex, truncated data or trailing bytes
    """
    data = bytes.fromhex(witness_hex)
    pos = 0

    def read_compact_size() -> int:
        nonlocal pos
        try:
            value, size = parse_compact_size(data[pos:])
        except (IndexError, struct.error):
            raise ValueError(f"Truncated length prefix at offset {pos}")
        pos += size
        return value

    items = []
    for _ in range(read_compact_size()):
        length = read_compact_size()
        if pos + length > len(data):
            raise ValueError("Witness item runs past end of data")
        items.append(data[pos:pos+length])
        pos += length
    if pos != len(data):
        raise ValueError(f"{len(data) - pos} trailing bytes after witness stack")
    return items


def extract_preimage(witness_items: List[bytes], payment_hash: str) -> Optional[bytes]:
    """
    Return the preimage if this witness spends the redeem leaf for `payment_hash`.

    The leaf script must commit to the payment hash and the revealed item
    must hash to it; anything else (refund spends, other contracts) gives None.
    """
    if len(witness_items) != 4:
        return None

    parsed = parse_redeem_script(witness_items[2])
    if parsed is None:
        return None

    script_hash, _ = parsed
    expected = bytes.fromhex(payment_hash)
    if script_hash != expected:
        return None

    preimage = witness_items[1]
    if hashlib.sha256(preimage).digest() != expected:
        log.warning("Redeem witness preimage does not match the payment hash")
        return None
    return preimage


def preimage_from_transaction(tx: Dict[str, Any], payment_hash: str) -> Optional[bytes]:
    """Scan every input of an Esplora transaction JSON for a redeem witness."""
    for vin in tx.get("vin", []):
        witness = vin.get("witness") or []
        try:
            items = [bytes.fromhex(w) for w in witness]
        except ValueError:
            continue
        preimage = extract_preimage(items, payment_hash)
        if preimage is not None:
            return preimage
    return None


async def find_preimage(client: EsploraClient, txid: str, payment_hash: str) -> Optional[bytes]:
    """
    Fetch a transaction and pull the preimage out of its redeem input.

    Returns None if the transaction does not redeem the contract.
    """
    tx = await client.fetch_transaction(txid)
    preimage = preimage_from_transaction(tx, payment_hash)
    if preimage is not None:
        log.info(f"Preimage revealed in {txid}")
    return preimage


async def find_deposit_preimage(client: EsploraClient, deposit_txid: str, vout: int,
                                payment_hash: str) -> Optional[bytes]:
    """
    Follow a contract deposit to its spender and extract the preimage.

    Returns None while the deposit is unspent or if it was refunded.
    """
    outspend = await client.fetch_outspend(deposit_txid, vout)
    if not outspend.get("spent"):
        return None
    spender = outspend.get("txid")
    if not spender:
        return None
    return await find_preimage(client, spender, payment_hash)
