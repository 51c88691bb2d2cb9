"""
Taproot HTLC (P2TR) contract construction and settlement.

Every contract commits three leaves under the BIP-341 NUMS internal key, so
the key path is unspendable and settlement always goes through a script:

            merkle root
           /           \\
      redeem (d=1)    branch
                     /       \\
              refund (d=2)  instant_refund (d=2)

Settlement functions are pure: each one rebuilds the tree from the terms,
builds one input per deposit, one output to the destination worth
sum(deposits) - fee, signs every input and attaches the path's witness.
Nothing is cached between calls; equal terms always give an equal tree.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import coincurve
from bitcoinutils.script import Script
from bitcoinutils.transactions import Transaction, TxOutput

from ..core import (
    ContractTerms, Deposit, HTLCType, Network, SpendingPath, NUMS_POINT,
    MAX_RELATIVE_LOCKTIME,
)
from ..errors import (
    InvalidHtlcType, InvalidTimelock, InvalidNumsPoint, ControlBlockError,
    InvalidPreimage, InvalidPrivateKey, InsufficientFunds,
)
from .script import redeem_script, refund_script, instant_refund_script
from .taptree import TaprootBuilder, TaprootSpendInfo
from .address import p2tr_address, address_to_script_pubkey
from .tx import build_input, build_output, build_transaction, estimate_fee
from .sighash import taproot_script_spend_sighash, SIGHASH_DEFAULT
from .signer import parse_private_key, sign_schnorr, x_only_public_key
from .witness import redeem_witness, refund_witness, instant_refund_witness

log = logging.getLogger(__name__)


# Leaf depths; changing them changes every address
REDEEM_LEAF_DEPTH = 1
REFUND_LEAF_DEPTH = 2
INSTANT_REFUND_LEAF_DEPTH = 2


@dataclass(frozen=True)
class ContractTree:
    """Script tree, output key and deposit address derived from ContractTerms."""
    spend_info: TaprootSpendInfo
    address: str
    network: Network
    scripts: Dict[SpendingPath, Script]

    def __hash__(self):
        return hash((self.spend_info, self.address, self.network))

    @property
    def internal_key(self) -> bytes:
        return self.spend_info.internal_key

    @property
    def merkle_root(self) -> bytes:
        return self.spend_info.merkle_root

    @property
    def output_key(self) -> bytes:
        return self.spend_info.output_key

    @property
    def output_key_parity(self) -> bool:
        return self.spend_info.output_key_parity

    @property
    def script_pubkey(self) -> Script:
        return self.spend_info.script_pubkey

    def tapscript(self, path: SpendingPath) -> Script:
        return self.scripts[path]

    def leaf_script(self, path: SpendingPath) -> bytes:
        return self.scripts[path].to_bytes()

    def leaf_hash(self, path: SpendingPath) -> bytes:
        return self.spend_info.leaf_hash(self.scripts[path])

    def control_block(self, path: SpendingPath) -> bytes:
        cb = self.spend_info.control_block(self.scripts[path])
        if cb is None:
            raise ControlBlockError(f"No control block for {path.value} leaf")
        return cb.to_bytes()


def _validate_terms(terms: ContractTerms):
    if terms.htlc_type != HTLCType.P2TR2:
        raise InvalidHtlcType(terms.htlc_type)
    timelock = terms.timelock
    if isinstance(timelock, bool) or not isinstance(timelock, int) \
            or not 0 < timelock <= MAX_RELATIVE_LOCKTIME:
        raise InvalidTimelock(timelock)


def leaf_scripts(terms: ContractTerms) -> Dict[SpendingPath, Script]:
    """Build the three leaf scripts for a contract."""
    return {
        SpendingPath.REDEEM: redeem_script(terms.payment_hash, terms.responder_pubkey),
        SpendingPath.REFUND: refund_script(terms.timelock, terms.initiator_pubkey),
        SpendingPath.INSTANT_REFUND: instant_refund_script(
            terms.initiator_pubkey, terms.responder_pubkey
        ),
    }


def get_spending_info(terms: ContractTerms) -> Tuple[TaprootSpendInfo, Dict[SpendingPath, Script]]:
    """
    Commit the leaves into a script tree under the NUMS internal key.

    Raises:
        InvalidHtlcType, InvalidTimelock, InvalidPaymentHash,
        InvalidResponderPubkey, InvalidInitiatorPubkey,
        TaprootBuilderError, TaprootBuildError, InvalidNumsPoint
    """
    _validate_terms(terms)
    scripts = leaf_scripts(terms)

    try:
        internal_key = bytes.fromhex(NUMS_POINT)
    except ValueError as e:
        raise InvalidNumsPoint(str(e))

    builder = TaprootBuilder()
    builder.add_leaf(REDEEM_LEAF_DEPTH, scripts[SpendingPath.REDEEM])
    builder.add_leaf(REFUND_LEAF_DEPTH, scripts[SpendingPath.REFUND])
    builder.add_leaf(INSTANT_REFUND_LEAF_DEPTH, scripts[SpendingPath.INSTANT_REFUND])
    return builder.finalize(internal_key), scripts


def build_contract_tree(terms: ContractTerms, network: Network) -> ContractTree:
    network = Network.parse(network)
    spend_info, scripts = get_spending_info(terms)
    address = p2tr_address(spend_info.output_key, network)
    return ContractTree(spend_info=spend_info, address=address,
                        network=network, scripts=scripts)


def generate_address(terms: ContractTerms, network: Network) -> Tuple[str, ContractTree]:
    """
    Derive the deposit address for a contract.

    Returns:
        (address, contract tree)
    """
    tree = build_contract_tree(terms, network)
    return tree.address, tree


# =============================================================================
# Settlement
# =============================================================================

def _check_signer(key: coincurve.PrivateKey, expected_pubkey: str, role: str):
    if x_only_public_key(key).hex() != expected_pubkey.lower():
        raise InvalidPrivateKey(f"Private key does not match the {role} pubkey in the contract")


def _build_unsigned(tree: ContractTree, path: SpendingPath, timelock: int,
                    deposits: Sequence[Deposit], destination: str, fee_rate: int,
                    network: Network) -> Tuple[Transaction, List[TxOutput]]:
    """
    Inputs in caller order, prevouts for the sighash, one destination output.

    Returns:
        (unsigned transaction, prevouts)
    """
    if not deposits:
        raise InsufficientFunds(0, 0)

    relative_locktime = timelock if path == SpendingPath.REFUND else None
    inputs = []
    prevouts = []
    total_amount = 0
    for deposit in deposits:
        inputs.append(build_input(deposit.txid, deposit.vout, relative_locktime))
        prevouts.append(build_output(deposit.value, tree.script_pubkey))
        total_amount += deposit.value

    destination_script = address_to_script_pubkey(destination, network)

    fee = estimate_fee(len(inputs), 1, path.witness_size, fee_rate)
    if fee >= total_amount:
        raise InsufficientFunds(total_amount, fee)

    output = build_output(total_amount - fee, destination_script)
    log.info(f"{path.value}: {len(inputs)} inputs, {total_amount} sats in, fee {fee} sats "
             f"at {fee_rate} sat/vB -> {destination}")
    return build_transaction(inputs, [output]), prevouts


def _sighashes(tx: Transaction, prevouts: List[TxOutput], script: Script) -> List[bytes]:
    return [
        taproot_script_spend_sighash(tx, i, prevouts, script, SIGHASH_DEFAULT)
        for i in range(len(tx.inputs))
    ]


def redeem(terms: ContractTerms, preimage: str, responder_private_key: str,
           deposits: Sequence[Deposit], destination: str, fee_rate: int,
           network: Network) -> Transaction:
    """
    Claim the deposits on the hashlock path by revealing the preimage.

    Args:
        terms: Contract terms
        preimage: Secret (hex) whose SHA256 is terms.payment_hash
        responder_private_key: Responder key (hex or WIF)
        deposits: Outputs locked to the contract address, spent in order
        destination: Address receiving the funds
        fee_rate: sat/vB
        network: Network the contract lives on

    Returns:
        Signed transaction
    """
    network = Network.parse(network)
    log.info(f"Starting P2TR redeem for contract {terms.payment_hash}")
    _, tree = generate_address(terms, network)

    try:
        preimage_bytes = bytes.fromhex(preimage)
    except (ValueError, TypeError) as e:
        raise InvalidPreimage(f"Invalid preimage hex: {e}")
    if hashlib.sha256(preimage_bytes).hexdigest() != terms.payment_hash.lower():
        raise InvalidPreimage("Preimage does not match payment hash")

    script = tree.tapscript(SpendingPath.REDEEM)
    control_block = tree.control_block(SpendingPath.REDEEM)
    key = parse_private_key(responder_private_key)
    _check_signer(key, terms.responder_pubkey, "responder")

    tx, prevouts = _build_unsigned(tree, SpendingPath.REDEEM, terms.timelock,
                                   deposits, destination, fee_rate, network)
    for i, digest in enumerate(_sighashes(tx, prevouts, script)):
        signature = sign_schnorr(digest, key)
        tx.set_witness(i, redeem_witness(signature, preimage_bytes, script, control_block))

    log.info(f"Redeemed transaction: {tx.get_txid()}")
    return tx


def refund(terms: ContractTerms, initiator_private_key: str,
           deposits: Sequence[Deposit], destination: str, fee_rate: int,
           network: Network) -> Transaction:
    """
    Reclaim the deposits on the timelock path. Each input's nSequence
    carries the contract timelock, so the transaction is only valid once
    every deposit is `timelock` blocks deep.
    """
    network = Network.parse(network)
    log.info(f"Starting P2TR refund for contract {terms.payment_hash}")
    _, tree = generate_address(terms, network)

    script = tree.tapscript(SpendingPath.REFUND)
    control_block = tree.control_block(SpendingPath.REFUND)
    key = parse_private_key(initiator_private_key)
    _check_signer(key, terms.initiator_pubkey, "initiator")

    tx, prevouts = _build_unsigned(tree, SpendingPath.REFUND, terms.timelock,
                                   deposits, destination, fee_rate, network)
    for i, digest in enumerate(_sighashes(tx, prevouts, script)):
        signature = sign_schnorr(digest, key)
        tx.set_witness(i, refund_witness(signature, script, control_block))

    log.info(f"Refunded transaction: {tx.get_txid()}")
    return tx


def instant_refund(terms: ContractTerms, initiator_private_key: str,
                   responder_private_key: str, deposits: Sequence[Deposit],
                   destination: str, fee_rate: int, network: Network) -> Transaction:
    """
    Return the deposits before the timelock with both parties' signatures.
    Both keys sign the same digest independently.
    """
    network = Network.parse(network)
    log.info(f"Starting P2TR instant refund for contract {terms.payment_hash}")
    _, tree = generate_address(terms, network)

    script = tree.tapscript(SpendingPath.INSTANT_REFUND)
    control_block = tree.control_block(SpendingPath.INSTANT_REFUND)
    initiator_key = parse_private_key(initiator_private_key)
    redeemer_key = parse_private_key(responder_private_key)
    _check_signer(initiator_key, terms.initiator_pubkey, "initiator")
    _check_signer(redeemer_key, terms.responder_pubkey, "responder")

    tx, prevouts = _build_unsigned(tree, SpendingPath.INSTANT_REFUND, terms.timelock,
                                   deposits, destination, fee_rate, network)
    for i, digest in enumerate(_sighashes(tx, prevouts, script)):
        initiator_signature = sign_schnorr(digest, initiator_key)
        redeemer_signature = sign_schnorr(digest, redeemer_key)
        tx.set_witness(i, instant_refund_witness(
            redeemer_signature, initiator_signature, script, control_block
        ))

    log.info(f"Instant refunded transaction: {tx.get_txid()}")
    return tx
