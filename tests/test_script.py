#!/usr/bin/env python3
"""
Leaf script template tests.

Checks the exact byte layout of the three Taproot HTLC leaves, the
minimal encoding of the CSV timelock and the field-specific errors raised
for malformed terms.
"""

import sys
import os
import unittest

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bitcoinutils.script import Script

from taproot_htlc.errors import (
    InvalidPaymentHash, InvalidResponderPubkey, InvalidInitiatorPubkey, InvalidTimelock,
)
from taproot_htlc.htlc.script import (
    parse_x_only_pubkey, redeem_script, refund_script,
    instant_refund_script, parse_redeem_script,
)

from vectors import INITIATOR_PUBKEY, RESPONDER_PUBKEY, PAYMENT_HASH

# BIP-340 test vector: x coordinate with no point on the curve
OFF_CURVE_X = "eefdea4cdb677750a420fee807eacf21eb9898ae79b9768766e4faa04a2d4a34"


class TestLeafScripts(unittest.TestCase):

    def test_redeem_layout(self):
        script = redeem_script(PAYMENT_HASH, RESPONDER_PUBKEY)
        self.assertIsInstance(script, Script)
        # OP_SHA256 <32> OP_EQUALVERIFY <32> OP_CHECKSIG
        self.assertEqual(script.to_hex(),
                         "a820" + PAYMENT_HASH + "8820" + RESPONDER_PUBKEY + "ac")
        self.assertEqual(len(script.to_bytes()), 69)

    def test_refund_layout(self):
        script = refund_script(5, INITIATOR_PUBKEY)
        # OP_5 OP_CHECKSEQUENCEVERIFY OP_DROP <32> OP_CHECKSIG
        self.assertEqual(script.to_hex(), "55b27520" + INITIATOR_PUBKEY + "ac")

    def test_instant_refund_layout(self):
        script = instant_refund_script(INITIATOR_PUBKEY, RESPONDER_PUBKEY)
        # <32> OP_CHECKSIG <32> OP_CHECKSIGADD OP_2 OP_NUMEQUAL
        self.assertEqual(script.to_hex(),
                         "20" + INITIATOR_PUBKEY + "ac20" + RESPONDER_PUBKEY + "ba529c")

    def test_invalid_payment_hash(self):
        with self.assertRaises(InvalidPaymentHash):
            redeem_script("zz" * 32, RESPONDER_PUBKEY)
        with self.assertRaises(InvalidPaymentHash):
            redeem_script("ab" * 31, RESPONDER_PUBKEY)

    def test_invalid_responder(self):
        with self.assertRaises(InvalidResponderPubkey):
            redeem_script(PAYMENT_HASH, "invalid_pubkey")

    def test_invalid_initiator(self):
        with self.assertRaises(InvalidInitiatorPubkey):
            refund_script(144, OFF_CURVE_X)
        with self.assertRaises(InvalidInitiatorPubkey):
            instant_refund_script("invalid", RESPONDER_PUBKEY)

    def test_instant_refund_checks_initiator_first(self):
        with self.assertRaises(InvalidInitiatorPubkey):
            instant_refund_script("bad", "bad")

    def test_off_curve_key_rejected(self):
        with self.assertRaises(InvalidResponderPubkey):
            parse_x_only_pubkey(OFF_CURVE_X, InvalidResponderPubkey)


class TestTimelockEncoding(unittest.TestCase):
    """The CSV operand is a minimally encoded script number."""

    def _prefix(self, timelock):
        return refund_script(timelock, INITIATOR_PUBKEY).to_hex().split("b275")[0]

    def test_small_numbers_use_op_n(self):
        self.assertEqual(self._prefix(1), "51")
        self.assertEqual(self._prefix(16), "60")

    def test_single_byte_push(self):
        self.assertEqual(self._prefix(17), "0111")

    def test_sign_byte(self):
        """0x90 has the high bit set, so a zero byte keeps it positive."""
        self.assertEqual(self._prefix(144), "029000")
        self.assertEqual(self._prefix(0xffff), "03ffff00")

    def test_timelock_bounds(self):
        for timelock in (0, -1, 0x10000, True, "144"):
            with self.assertRaises(InvalidTimelock):
                refund_script(timelock, INITIATOR_PUBKEY)


class TestParseRedeemScript(unittest.TestCase):

    def test_recognises_redeem_leaf(self):
        script = redeem_script(PAYMENT_HASH, RESPONDER_PUBKEY).to_bytes()
        payment_hash, pubkey = parse_redeem_script(script)
        self.assertEqual(payment_hash.hex(), PAYMENT_HASH)
        self.assertEqual(pubkey.hex(), RESPONDER_PUBKEY)

    def test_other_leaves_not_recognised(self):
        self.assertIsNone(parse_redeem_script(refund_script(144, INITIATOR_PUBKEY).to_bytes()))
        self.assertIsNone(parse_redeem_script(
            instant_refund_script(INITIATOR_PUBKEY, RESPONDER_PUBKEY).to_bytes()))
        self.assertIsNone(parse_redeem_script(b""))

    def test_wrong_opcode_not_recognised(self):
        script = bytearray(redeem_script(PAYMENT_HASH, RESPONDER_PUBKEY).to_bytes())
        script[68] = 0xad   # OP_CHECKSIGVERIFY
        self.assertIsNone(parse_redeem_script(bytes(script)))


if __name__ == "__main__":
    unittest.main(verbosity=2)
