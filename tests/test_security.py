#!/usr/bin/env python3
"""
Tests for webhook signatures and PII masking.
"""

import base64
import hashlib
import hmac
import unittest

from enclave_bot.utils.errors import SignatureInvalid
from enclave_bot.utils.security import compute_signature, mask_pii, verify_signature

URL = "https://example.com/sms"
PARAMS = {"From": "+15551234567", "Body": "hello", "To": "+15550000000"}


class TestSignature(unittest.TestCase):

    def test_matches_reference_construction(self):
        payload = URL + "Bodyhello" + "From+15551234567" + "To+15550000000"
        expected = base64.b64encode(hmac.new(b"secret", payload.encode(), hashlib.sha1).digest()).decode()
        self.assertEqual(compute_signature("secret", URL, PARAMS), expected)

    def test_verify_accepts_valid(self):
        verify_signature("secret", compute_signature("secret", URL, PARAMS), URL, PARAMS)

    def test_verify_rejects_tampered_body(self):
        signature = compute_signature("secret", URL, PARAMS)
        with self.assertRaises(SignatureInvalid):
            verify_signature("secret", signature, URL, dict(PARAMS, Body="send it"))

    def test_verify_rejects_other_url(self):
        signature = compute_signature("secret", URL, PARAMS)
        with self.assertRaises(SignatureInvalid):
            verify_signature("secret", signature, "https://evil.example.com/sms", PARAMS)

    def test_missing_signature_or_token(self):
        with self.assertRaises(SignatureInvalid):
            verify_signature("secret", "", URL, PARAMS)
        with self.assertRaises(SignatureInvalid):
            verify_signature(None, "abc", URL, PARAMS)


class TestMaskPii(unittest.TestCase):

    def test_masks_phone_numbers(self):
        self.assertEqual(mask_pii("+15551234567"), "********4567")
        self.assertEqual(mask_pii("call 5551234567 now"), "call ******4567 now")

    def test_leaves_short_numbers(self):
        self.assertEqual(mask_pii("meeting at 9pm room 204"), "meeting at 9pm room 204")


if __name__ == '__main__':
    unittest.main()
