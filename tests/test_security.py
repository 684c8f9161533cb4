#!/usr/bin/env python3
"""
Unit tests for payment signature verification and key/token generation.
"""
import hashlib
import hmac
import re
import unittest

from common.security import (
    constant_time_equals, mint_access_token, random_key, sign_payment, verify_payment_signature,
)

SECRET = "rzp_test_secret"

class TestPaymentSignature(unittest.TestCase):
    """Gateway checkout signatures"""

    def test_signature_is_hmac_over_order_and_payment(self):
        expected = hmac.new(SECRET.encode(), b"order_A1|pay_B2", hashlib.sha256).hexdigest()
        self.assertEqual(sign_payment("order_A1", "pay_B2", SECRET), expected)
        print("✅ Signature matches HMAC-SHA256(order|payment)")

    def test_valid_signature_verifies(self):
        signature = sign_payment("order_A1", "pay_B2", SECRET)
        self.assertTrue(verify_payment_signature("order_A1", "pay_B2", signature, SECRET))
        self.assertTrue(verify_payment_signature("order_A1", "pay_B2", signature.upper(), SECRET))

    def test_forged_signatures_rejected(self):
        signature = sign_payment("order_A1", "pay_B2", SECRET)
        forged = [
            sign_payment("order_A1", "pay_B2", "another_secret"),
            sign_payment("order_A1", "pay_OTHER", SECRET),
            signature[:-1],
            "zz" * 32,
            "é" * 64,
            "",
        ]
        for candidate in forged:
            self.assertFalse(verify_payment_signature("order_A1", "pay_B2", candidate, SECRET), candidate)
        print(f"✅ {len(forged)} forged signatures rejected")

    def test_missing_secret_never_verifies(self):
        signature = sign_payment("order_A1", "pay_B2", "")
        self.assertFalse(verify_payment_signature("order_A1", "pay_B2", signature, ""))

    def test_constant_time_equals_rejects_non_strings(self):
        self.assertTrue(constant_time_equals("abc", "abc"))
        self.assertFalse(constant_time_equals("abc", None))
        self.assertFalse(constant_time_equals(None, None))

class TestGeneratedSecrets(unittest.TestCase):

    def test_random_key_shape(self):
        keys = {random_key(8) for _ in range(200)}
        for key in keys:
            self.assertRegex(key, r"^[a-z0-9]{8}$")
        self.assertGreater(len(keys), 190)

    def test_access_token_is_32_hex(self):
        token = mint_access_token()
        self.assertTrue(re.fullmatch(r"[a-f0-9]{32}", token))
        self.assertNotEqual(token, mint_access_token())

if __name__ == "__main__":
    unittest.main(verbosity=2)
