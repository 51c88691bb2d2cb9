"""
Taproot HTLC settlement against a live chain.

Wraps the pure builders in htlc.p2tr with the Esplora client:

1. Derive the contract address from the terms
2. Fetch deposits sent to it (filtered by confirmations)
3. Check each deposit really pays the contract scriptPubKey
4. Build, sign and broadcast the redeem / refund / instant-refund spend

Nothing here is stateful beyond the client; two TaprootHTLC objects built
from the same terms derive the same address and transactions.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from bitcoinutils.transactions import Transaction

from ..core import ContractTerms, Deposit, DepositStatus, Network
from ..config import HTLCConfig
from ..errors import DepositMismatch, TimelockNotExpired, InsufficientFunds, ParseError
from ..chains.esplora import EsploraClient
from ..htlc import p2tr
from ..htlc.p2tr import ContractTree

log = logging.getLogger(__name__)


class TaprootHTLC:
    """
    Taproot HTLC bound to one contract and one Esplora endpoint.
    """

    def __init__(self, terms: ContractTerms, client: EsploraClient,
                 network: Network = Network.TESTNET, min_confirmations: int = 1,
                 fee_priority: str = "half_hour", default_fee_rate: Optional[int] = None):
        self.terms = terms
        self.client = client
        self.network = Network.parse(network)
        self.min_confirmations = min_confirmations
        self.fee_priority = fee_priority
        self.default_fee_rate = default_fee_rate
        self._address, self._tree = p2tr.generate_address(terms, self.network)

    @classmethod
    def from_config(cls, terms: ContractTerms, config: HTLCConfig,
                    client: Optional[EsploraClient] = None) -> "TaprootHTLC":
        return cls(
            terms,
            client or EsploraClient(config.esplora_config()),
            network=config.network,
            min_confirmations=config.min_confirmations,
            fee_priority=config.fee_priority,
            default_fee_rate=config.default_fee_rate,
        )

    @property
    def address(self) -> str:
        return self._address

    @property
    def tree(self) -> ContractTree:
        return self._tree

    # =========================================================================
    # Deposits
    # =========================================================================

    async def get_deposits(self, min_confirmations: Optional[int] = None) -> List[Deposit]:
        """
        Deposits at the contract address with enough confirmations.

        With min_confirmations=0 mempool deposits are included.
        """
        required = self.min_confirmations if min_confirmations is None else min_confirmations
        utxos = await self.client.fetch_utxos(self.address)
        if required == 0:
            return utxos

        tip = await self.client.fetch_tip_height()
        deposits = [u for u in utxos if u.status.confirmations(tip) >= required]
        log.info(f"HTLC {self.address}: {len(deposits)}/{len(utxos)} deposits "
                 f"with >= {required} confirmations")
        return deposits

    async def verify_deposits(self, deposits: Sequence[Deposit]) -> List[Deposit]:
        """
        Check every deposit pays the contract output with the stated value.

        The UTXO listing (or the caller) is trusted for discovery only; this
        re-reads each funding transaction so a fabricated deposit cannot be
        signed over.

        Returns:
            The deposits with their confirmation status as the chain reports it

        Raises:
            DepositMismatch: wrong script or value
            ParseError: the funding output cannot be read
        """
        expected = self._tree.script_pubkey.to_hex()
        verified = []
        for deposit in deposits:
            output = await self.client.fetch_output(deposit.txid, deposit.vout)
            script_pubkey = str(output.get("scriptpubkey", "")).lower()
            if script_pubkey != expected:
                raise DepositMismatch(
                    f"Deposit {deposit.outpoint} pays {script_pubkey or 'unknown script'}, "
                    f"not contract {self.address}"
                )
            try:
                value = int(output["value"])
                status = DepositStatus.from_esplora(output.get("status"))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                log.error(f"Failed to parse funding output {deposit.outpoint}: {e}")
                raise ParseError(f"Invalid funding output {deposit.outpoint}: {e}") from e
            if value != deposit.value:
                raise DepositMismatch(
                    f"Deposit {deposit.outpoint} value {value} != reported {deposit.value}"
                )
            verified.append(replace(deposit, status=status))
        log.info(f"Verified {len(verified)} deposits for {self.address}")
        return verified

    async def resolve_fee_rate(self, fee_rate: Optional[int] = None) -> int:
        """Explicit rate, else the configured default, else the Esplora estimate."""
        if fee_rate is not None:
            return fee_rate
        if self.default_fee_rate is not None:
            return self.default_fee_rate
        fees = await self.client.fetch_recommended_fees()
        return fees.for_priority(self.fee_priority)

    async def _prepare(self, deposits: Optional[Sequence[Deposit]],
                       fee_rate: Optional[int]):
        if deposits is None:
            deposits = await self.get_deposits()
        deposits = list(deposits)
        if not deposits:
            raise InsufficientFunds(0, 0)
        deposits = await self.verify_deposits(deposits)
        return deposits, await self.resolve_fee_rate(fee_rate)

    async def _broadcast(self, tx: Transaction) -> str:
        txid = await self.client.broadcast(tx.to_hex())
        if txid != tx.get_txid():
            log.warning(f"Broadcast returned txid {txid}, expected {tx.get_txid()}")
        return txid

    # =========================================================================
    # Settlement
    # =========================================================================

    async def redeem(self, preimage: str, responder_private_key: str, destination: str,
                     deposits: Optional[Sequence[Deposit]] = None,
                     fee_rate: Optional[int] = None) -> str:
        """
        Claim with the preimage and broadcast.

        Returns:
            Redeem transaction ID
        """
        deposits, rate = await self._prepare(deposits, fee_rate)
        tx = p2tr.redeem(self.terms, preimage, responder_private_key, deposits,
                         destination, rate, self.network)
        txid = await self._broadcast(tx)
        log.info(f"HTLC redeemed: txid={txid}")
        return txid

    async def refund(self, initiator_private_key: str, destination: str,
                     deposits: Optional[Sequence[Deposit]] = None,
                     fee_rate: Optional[int] = None) -> str:
        """
        Refund after the relative timelock and broadcast. Deposit depth is
        taken from the funding transactions on chain, whatever status the
        passed-in deposits carry.

        Raises:
            TimelockNotExpired: a deposit is unconfirmed or not yet
                `timelock` blocks deep at the next block

        Returns:
            Refund transaction ID
        """
        deposits, rate = await self._prepare(deposits, fee_rate)

        tip = await self.client.fetch_tip_height()
        for deposit in deposits:
            confirmations = deposit.status.confirmations(tip)
            # Spendable in the next block once its age reaches the timelock
            if confirmations == 0 or confirmations < self.terms.timelock:
                remaining = self.terms.timelock - confirmations
                raise TimelockNotExpired(
                    f"Cannot refund {deposit.outpoint} yet: {confirmations} confirmations, "
                    f"timelock {self.terms.timelock}. Wait {remaining} more blocks."
                )

        tx = p2tr.refund(self.terms, initiator_private_key, deposits,
                         destination, rate, self.network)
        txid = await self._broadcast(tx)
        log.info(f"HTLC refunded: txid={txid}")
        return txid

    async def instant_refund(self, initiator_private_key: str, responder_private_key: str,
                             destination: str,
                             deposits: Optional[Sequence[Deposit]] = None,
                             fee_rate: Optional[int] = None) -> str:
        """
        Cooperative refund signed by both parties and broadcast.

        Returns:
            Instant refund transaction ID
        """
        deposits, rate = await self._prepare(deposits, fee_rate)
        tx = p2tr.instant_refund(self.terms, initiator_private_key, responder_private_key,
                                 deposits, destination, rate, self.network)
        txid = await self._broadcast(tx)
        log.info(f"HTLC instant refunded: txid={txid}")
        return txid
