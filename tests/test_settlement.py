#!/usr/bin/env python3
"""
TaprootHTLC settlement tests with a mocked Esplora client.

Covers deposit discovery, deposit verification, fee resolution, the CSV
maturity check before refunds, and the exact bytes handed to broadcast.
"""

import sys
import os
import struct
import unittest
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from taproot_htlc.chains.esplora import EsploraClient, RecommendedFees
from taproot_htlc.config import HTLCConfig
from taproot_htlc.core import Network, Deposit, DepositStatus
from taproot_htlc.errors import DepositMismatch, TimelockNotExpired, InsufficientFunds, ParseError
from taproot_htlc.swap.settlement import TaprootHTLC

from vectors import (
    PREIMAGE, INITIATOR_PRIVATE_KEY, RESPONDER_PRIVATE_KEY, EXPECTED_ADDRESS,
    REDEEM_DESTINATION, REFUND_DESTINATION, FEE_RATE, REDEEM_TX_HEX, REFUND_TX_HEX,
    INSTANT_REFUND_TX_HEX, REDEEM_DEPOSIT, REFUND_DEPOSIT, INSTANT_REFUND_DEPOSIT,
    default_terms, refund_terms, confirmed,
)


def esplora_status(status: DepositStatus):
    """The `status` object Esplora attaches to a transaction."""
    if not status.confirmed:
        return {"confirmed": False}
    return {"confirmed": True, "block_height": status.block_height}


def mock_client(htlc_script_pubkey: str, deposits, tip=1000, broadcast_txid="ff" * 32,
                chain_status=None):
    """
    Esplora stand-in whose funding outputs all pay the contract. Each funding
    transaction reports the status of its deposit unless `chain_status`
    (outpoint -> status dict) says otherwise.
    """
    chain_status = chain_status or {}

    def fetch_output(txid, vout):
        deposit = next(d for d in deposits if d.txid == txid and d.vout == vout)
        return {
            "scriptpubkey": htlc_script_pubkey,
            "value": deposit.value,
            "status": chain_status.get(deposit.outpoint, esplora_status(deposit.status)),
        }

    client = MagicMock(spec=EsploraClient)
    client.fetch_utxos = AsyncMock(return_value=list(deposits))
    client.fetch_tip_height = AsyncMock(return_value=tip)
    client.fetch_output = AsyncMock(side_effect=fetch_output)
    client.fetch_recommended_fees = AsyncMock(return_value=RecommendedFees(20, 10, 5, 2, 1))
    client.broadcast = AsyncMock(return_value=broadcast_txid)
    return client


class TestDeposits(unittest.IsolatedAsyncioTestCase):

    def _htlc(self, deposits, tip=1000, min_confirmations=1):
        htlc = TaprootHTLC(default_terms(), MagicMock(), Network.TESTNET,
                           min_confirmations=min_confirmations)
        htlc.client = mock_client(htlc.tree.script_pubkey.to_hex(), deposits, tip)
        return htlc

    def test_address(self):
        htlc = TaprootHTLC(default_terms(), MagicMock(), "testnet")
        self.assertEqual(htlc.address, EXPECTED_ADDRESS)
        self.assertEqual(htlc.network, Network.TESTNET)

    async def test_confirmation_filter(self):
        deep = replace(REDEEM_DEPOSIT, status=confirmed(990))
        shallow = replace(INSTANT_REFUND_DEPOSIT, status=confirmed(1000))
        mempool = Deposit(txid="ab" * 32, vout=0, value=500)
        htlc = self._htlc([deep, shallow, mempool], tip=1000, min_confirmations=2)

        self.assertEqual(await htlc.get_deposits(), [deep])
        self.assertEqual(await htlc.get_deposits(min_confirmations=1), [deep, shallow])
        self.assertEqual(await htlc.get_deposits(min_confirmations=0), [deep, shallow, mempool])
        htlc.client.fetch_utxos.assert_awaited_with(EXPECTED_ADDRESS)

    async def test_verify_deposits(self):
        htlc = self._htlc([REDEEM_DEPOSIT])
        verified = await htlc.verify_deposits([REDEEM_DEPOSIT])
        self.assertEqual(verified, [REDEEM_DEPOSIT])
        htlc.client.fetch_output.assert_awaited_once_with(REDEEM_DEPOSIT.txid, 0)

    async def test_verify_takes_status_from_chain(self):
        deposit = replace(REDEEM_DEPOSIT, status=confirmed(990))
        htlc = self._htlc([deposit])
        bare = Deposit(txid=deposit.txid, vout=deposit.vout, value=deposit.value)
        self.assertEqual(await htlc.verify_deposits([bare]), [deposit])

    async def test_verify_missing_value(self):
        htlc = self._htlc([REDEEM_DEPOSIT])
        script_pubkey = htlc.tree.script_pubkey.to_hex()
        for output in ({"scriptpubkey": script_pubkey, "value": None},
                       {"scriptpubkey": script_pubkey},
                       {"scriptpubkey": script_pubkey, "value": "lots"}):
            htlc.client.fetch_output = AsyncMock(return_value=output)
            with self.assertRaises(ParseError):
                await htlc.verify_deposits([REDEEM_DEPOSIT])

    async def test_verify_bad_status(self):
        htlc = self._htlc([REDEEM_DEPOSIT])
        htlc.client.fetch_output = AsyncMock(return_value={
            "scriptpubkey": htlc.tree.script_pubkey.to_hex(), "value": 1000,
            "status": {"confirmed": True, "block_height": "tall"},
        })
        with self.assertRaises(ParseError):
            await htlc.verify_deposits([REDEEM_DEPOSIT])

    async def test_missing_value_never_signed(self):
        htlc = self._htlc([REDEEM_DEPOSIT])
        htlc.client.fetch_output = AsyncMock(
            return_value={"scriptpubkey": htlc.tree.script_pubkey.to_hex(), "value": None})
        with self.assertRaises(ParseError):
            await htlc.redeem(PREIMAGE, RESPONDER_PRIVATE_KEY, REDEEM_DESTINATION,
                              deposits=[REDEEM_DEPOSIT], fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_not_awaited()

    async def test_verify_wrong_script(self):
        htlc = self._htlc([REDEEM_DEPOSIT])
        htlc.client.fetch_output = AsyncMock(
            return_value={"scriptpubkey": "0014" + "00" * 20, "value": 1000})
        with self.assertRaises(DepositMismatch):
            await htlc.verify_deposits([REDEEM_DEPOSIT])

    async def test_verify_wrong_value(self):
        htlc = self._htlc([REDEEM_DEPOSIT])
        inflated = replace(REDEEM_DEPOSIT, value=5000)
        with self.assertRaises(DepositMismatch):
            await htlc.verify_deposits([inflated])

    async def test_resolve_fee_rate(self):
        htlc = self._htlc([])
        self.assertEqual(await htlc.resolve_fee_rate(7), 7)
        self.assertEqual(await htlc.resolve_fee_rate(), 10)
        htlc.fee_priority = "fastest"
        self.assertEqual(await htlc.resolve_fee_rate(), 20)
        htlc.default_fee_rate = 4
        self.assertEqual(await htlc.resolve_fee_rate(), 4)

    async def test_no_deposits(self):
        htlc = self._htlc([])
        with self.assertRaises(InsufficientFunds):
            await htlc.redeem(PREIMAGE, RESPONDER_PRIVATE_KEY, REDEEM_DESTINATION)
        htlc.client.broadcast.assert_not_awaited()


class TestSettlement(unittest.IsolatedAsyncioTestCase):

    def _htlc(self, terms, deposits, tip=1000, chain_status=None):
        htlc = TaprootHTLC(terms, MagicMock(), Network.TESTNET)
        htlc.client = mock_client(htlc.tree.script_pubkey.to_hex(), deposits, tip,
                                  chain_status=chain_status)
        return htlc

    async def test_redeem_broadcasts_signed_tx(self):
        htlc = self._htlc(default_terms(), [REDEEM_DEPOSIT])
        txid = await htlc.redeem(PREIMAGE, RESPONDER_PRIVATE_KEY, REDEEM_DESTINATION,
                                 deposits=[REDEEM_DEPOSIT], fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_awaited_once_with(REDEEM_TX_HEX)
        self.assertEqual(txid, "ff" * 32)

    async def test_redeem_discovers_deposits(self):
        deposit = replace(REDEEM_DEPOSIT, status=confirmed(990))
        htlc = self._htlc(default_terms(), [deposit])
        await htlc.redeem(PREIMAGE, RESPONDER_PRIVATE_KEY, REDEEM_DESTINATION, fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_awaited_once_with(REDEEM_TX_HEX)

    async def test_redeem_refuses_unverified_deposit(self):
        htlc = self._htlc(default_terms(), [REDEEM_DEPOSIT])
        htlc.client.fetch_output = AsyncMock(
            return_value={"scriptpubkey": "5120" + "00" * 32, "value": 1000})
        with self.assertRaises(DepositMismatch):
            await htlc.redeem(PREIMAGE, RESPONDER_PRIVATE_KEY, REDEEM_DESTINATION,
                              deposits=[REDEEM_DEPOSIT], fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_not_awaited()

    async def test_refund_after_timelock(self):
        # Timelock 5: mined at 996, tip 1000 -> 5 confirmations
        deposit = replace(REFUND_DEPOSIT, status=confirmed(996))
        htlc = self._htlc(refund_terms(), [deposit], tip=1000)
        await htlc.refund(INITIATOR_PRIVATE_KEY, REFUND_DESTINATION,
                          deposits=[deposit], fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_awaited_once_with(REFUND_TX_HEX)

    async def test_refund_before_timelock(self):
        deposit = replace(REFUND_DEPOSIT, status=confirmed(997))
        htlc = self._htlc(refund_terms(), [deposit], tip=1000)
        with self.assertRaises(TimelockNotExpired):
            await htlc.refund(INITIATOR_PRIVATE_KEY, REFUND_DESTINATION,
                              deposits=[deposit], fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_not_awaited()

    async def test_refund_unconfirmed(self):
        deposit = replace(REFUND_DEPOSIT, status=DepositStatus(confirmed=False))
        htlc = self._htlc(refund_terms(), [deposit])
        with self.assertRaises(TimelockNotExpired):
            await htlc.refund(INITIATOR_PRIVATE_KEY, REFUND_DESTINATION,
                              deposits=[deposit], fee_rate=FEE_RATE)

    async def test_refund_depth_from_chain(self):
        # Caller passes a bare deposit; the chain has it at 950, 51 deep at tip 1000
        bare = Deposit(txid=REFUND_DEPOSIT.txid, vout=REFUND_DEPOSIT.vout,
                       value=REFUND_DEPOSIT.value)
        htlc = self._htlc(refund_terms(), [bare], tip=1000, chain_status={
            bare.outpoint: {"confirmed": True, "block_height": 950},
        })
        await htlc.refund(INITIATOR_PRIVATE_KEY, REFUND_DESTINATION,
                          deposits=[bare], fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_awaited_once_with(REFUND_TX_HEX)

    async def test_refund_ignores_caller_status(self):
        claimed = replace(REFUND_DEPOSIT, status=confirmed(900))
        htlc = self._htlc(refund_terms(), [claimed], tip=1000, chain_status={
            claimed.outpoint: {"confirmed": False},
        })
        with self.assertRaises(TimelockNotExpired):
            await htlc.refund(INITIATOR_PRIVATE_KEY, REFUND_DESTINATION,
                              deposits=[claimed], fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_not_awaited()

    async def test_instant_refund(self):
        htlc = self._htlc(default_terms(), [INSTANT_REFUND_DEPOSIT])
        await htlc.instant_refund(INITIATOR_PRIVATE_KEY, RESPONDER_PRIVATE_KEY,
                                  REFUND_DESTINATION, deposits=[INSTANT_REFUND_DEPOSIT],
                                  fee_rate=FEE_RATE)
        htlc.client.broadcast.assert_awaited_once_with(INSTANT_REFUND_TX_HEX)

    async def test_fee_rate_from_estimate(self):
        deposit = replace(REDEEM_DEPOSIT, value=100000)
        htlc = self._htlc(default_terms(), [deposit])
        await htlc.redeem(PREIMAGE, RESPONDER_PRIVATE_KEY, REDEEM_DESTINATION, deposits=[deposit])
        htlc.client.fetch_recommended_fees.assert_awaited_once()
        # half_hour estimate of 10 sat/vB on a 148 vB redeem
        tx_hex = htlc.client.broadcast.await_args.args[0]
        self.assertIn(struct.pack("<Q", 100000 - 1480).hex(), tx_hex)


class TestFromConfig(unittest.TestCase):

    def test_from_config(self):
        config = HTLCConfig(network=Network.TESTNET, esplora_url="http://localhost:3002",
                            min_confirmations=3, default_fee_rate=2)
        htlc = TaprootHTLC.from_config(default_terms(), config)
        self.assertEqual(htlc.address, EXPECTED_ADDRESS)
        self.assertEqual(htlc.min_confirmations, 3)
        self.assertEqual(htlc.default_fee_rate, 2)
        self.assertEqual(htlc.client.base_url, "http://localhost:3002")


if __name__ == "__main__":
    unittest.main(verbosity=2)
