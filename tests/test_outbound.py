#!/usr/bin/env python3
"""
Tests for SMS chunking, phone normalization and the Twilio transport.
"""

import unittest

from enclave_bot.app.outbound import TwilioTransport, normalize_e164, split_message
from enclave_bot.utils.errors import DeliveryFailure


class TestSplitMessage(unittest.TestCase):

    def test_short_message_is_one_chunk(self):
        self.assertEqual(split_message("hello"), ["hello"])

    def test_empty(self):
        self.assertEqual(split_message(""), [])

    def test_no_punctuation_hard_split(self):
        text = "x" * 3200
        chunks = split_message(text, 1600)
        self.assertEqual(len(chunks), 2)
        for chunk in chunks:
            self.assertTrue(chunk)
            self.assertLessEqual(len(chunk), 1600)
        self.assertEqual("".join(c.strip() for c in chunks), text)

    def test_sentence_boundary_after_half(self):
        text = "A" * 1000 + ". " + "B" * 1000
        chunks = split_message(text, 1600)
        self.assertEqual(chunks[0], "A" * 1000 + ". ")
        self.assertEqual("".join(chunks), text)

    def test_sentence_boundary_before_half_is_ignored(self):
        text = "Hi. " + "word " * 400
        chunks = split_message(text, 1600)
        self.assertGreater(len(chunks[0]), 800)
        self.assertTrue(chunks[0].endswith(" "))
        self.assertEqual("".join(chunks), text)

    def test_newline_boundary(self):
        text = "line one " * 100 + "\n" + "z" * 900
        chunks = split_message(text, 1600)
        self.assertTrue(chunks[0].endswith("\n"))
        self.assertEqual("".join(chunks), text)

    def test_all_chunks_within_limit(self):
        text = "Short one. " * 50 + "x" * 700 + " tail words here? " * 30
        chunks = split_message(text, 300)
        self.assertTrue(all(0 < len(c) <= 300 for c in chunks))
        self.assertEqual("".join(chunks), text)

    def test_rejects_tiny_limit(self):
        with self.assertRaises(ValueError):
            split_message("abc", 1)


class TestNormalizeE164(unittest.TestCase):

    def test_us_numbers(self):
        self.assertEqual(normalize_e164("(555) 123-4567"), "+15551234567")
        self.assertEqual(normalize_e164("1-555-123-4567"), "+15551234567")
        self.assertEqual(normalize_e164("+15551234567"), "+15551234567")

    def test_international(self):
        self.assertEqual(normalize_e164("+447700900123"), "+447700900123")
        self.assertEqual(normalize_e164("447700900123"), "+447700900123")


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        return self._payload


class FakeHttp:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.response


class TestTwilioTransport(unittest.TestCase):

    def make(self, response):
        http = FakeHttp(response)
        return TwilioTransport("AC123", "token", "+15550000000", http=http), http

    def test_send_returns_sid(self):
        transport, http = self.make(FakeResponse(201, {"sid": "SM1"}))
        self.assertEqual(transport.send("5551234567", "hello"), "SM1")
        url, kwargs = http.calls[0]
        self.assertIn("/Accounts/AC123/Messages.json", url)
        self.assertEqual(kwargs["data"], {"From": "+15550000000", "To": "+15551234567", "Body": "hello"})
        self.assertEqual(kwargs["auth"], ("AC123", "token"))

    def test_error_status_raises(self):
        transport, _ = self.make(FakeResponse(400, {"message": "invalid number"}))
        with self.assertRaises(DeliveryFailure) as ctx:
            transport.send("+15551234567", "hello")
        self.assertIn("invalid number", ctx.exception.reason)

    def test_unconfigured_raises(self):
        transport = TwilioTransport("AC123", "token", "+15550000000", http=FakeHttp(None))
        transport.from_number = None
        with self.assertRaises(DeliveryFailure):
            transport.send("+15551234567", "hello")


if __name__ == '__main__':
    unittest.main()
