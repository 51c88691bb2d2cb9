#!/usr/bin/env python3
"""
Example: Taproot HTLC lifecycle

Walks through one contract from the responder's side:

1. Initiator and responder agree on terms (keys, payment hash, timelock)
2. Both derive the same P2TR deposit address
3. Initiator funds the address
4. Responder redeems with the preimage (or initiator refunds after timeout)
5. Initiator reads the preimage back from the redeem witness

Usage:
    python taproot_swap.py              # offline: derive address only
    python taproot_swap.py --live       # query Esplora for deposits

Environment (for --live): see taproot_htlc.config
"""

import sys
import asyncio
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import coincurve

from taproot_htlc import (
    ContractTerms, HTLCConfig, TaprootHTLC, generate_address, generate_secret,
    configure_logging, find_preimage,
)
from taproot_htlc.htlc.signer import x_only_public_key

log = logging.getLogger(__name__)


async def watch(terms: ContractTerms, config: HTLCConfig):
    htlc = TaprootHTLC.from_config(terms, config)
    async with htlc.client:
        deposits = await htlc.get_deposits(min_confirmations=0)
        log.info(f"Found {len(deposits)} deposits at {htlc.address}")
        for deposit in deposits:
            log.info(f"  {deposit.outpoint}: {deposit.value} sats "
                     f"(confirmed={deposit.status.confirmed})")

            outspend = await htlc.client.fetch_outspend(deposit.txid, deposit.vout)
            if outspend.get("spent"):
                preimage = await find_preimage(htlc.client, outspend["txid"], terms.payment_hash)
                log.info(f"  spent by {outspend['txid']}, preimage revealed: {preimage is not None}")


def main():
    configure_logging()
    config = HTLCConfig.from_env()

    # =================================================================
    # 1. Agree on terms
    # =================================================================
    initiator_key = coincurve.PrivateKey()
    responder_key = coincurve.PrivateKey()
    secret, payment_hash = generate_secret()

    terms = ContractTerms(
        initiator_pubkey=x_only_public_key(initiator_key).hex(),
        responder_pubkey=x_only_public_key(responder_key).hex(),
        timelock=144,           # ~1 day
        amount=10000,
        payment_hash=payment_hash,
    )
    log.info(f"Terms: {terms.to_dict()}")
    log.info(f"Secret ({len(secret) // 2} bytes) stays off-chain until redeem")

    # =================================================================
    # 2. Derive the deposit address
    # =================================================================
    address, tree = generate_address(terms, config.network)
    log.info(f"Deposit address ({config.network.value}): {address}")
    log.info(f"  Output key: {tree.output_key.hex()}")
    log.info(f"  Merkle root: {tree.merkle_root.hex()}")

    # =================================================================
    # 3-5. Settlement (live)
    # =================================================================
    if "--live" in sys.argv:
        asyncio.run(watch(terms, config))
    else:
        log.info("")
        log.info("Once funded, settle with TaprootHTLC:")
        log.info("  await htlc.redeem(secret, responder_key, destination)")
        log.info("  await htlc.refund(initiator_key, destination)          # after 144 blocks")
        log.info("  await htlc.instant_refund(initiator_key, responder_key, destination)")


if __name__ == "__main__":
    main()
