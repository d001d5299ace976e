#!/usr/bin/env python3
"""
Outbound SMS channel: chunking, phone normalization and the Twilio transport.
"""

import re
from typing import List, Optional

import requests

from ..utils.errors import DeliveryFailure
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .config import Config

logger = get_logger()

SENTENCE_BREAKS = (". ", "? ", "! ", "\n")
WHITESPACE = re.compile(r"\s")


def _sentence_cut(window: str, floor: int) -> Optional[int]:
    best = None
    for sep in SENTENCE_BREAKS:
        idx = window.rfind(sep)
        if idx == -1:
            continue
        end = idx + len(sep)
        if end >= floor and (best is None or end > best):
            best = end
    return best


def _word_cut(window: str) -> Optional[int]:
    last = None
    for m in WHITESPACE.finditer(window):
        last = m.start()
    if not last:
        return None
    return last + 1


def split_message(text: str, max_len: int = 1600) -> List[str]:
    """
    Split text into consecutive chunks no longer than ``max_len``.

    Prefers a sentence boundary at or after half the limit, then the last
    whitespace, then a hard cut. Chunks are raw slices of the input, so
    joining them reproduces it exactly.
    """
    if max_len < 2:
        raise ValueError("max_len must be at least 2")
    chunks: List[str] = []
    rest = text or ""
    while len(rest) > max_len:
        window = rest[:max_len]
        cut = _sentence_cut(window, max_len // 2) or _word_cut(window) or max_len
        chunks.append(rest[:cut])
        rest = rest[cut:]
    if rest:
        chunks.append(rest)
    return chunks


def normalize_e164(phone: str) -> str:
    """Normalize a US-style number to E.164 ('(555) 123-4567' -> '+15551234567')."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    return phone if (phone or "").startswith("+") else f"+{digits}"


class TwilioTransport:
    """Sends SMS through the Twilio Messages REST API."""

    def __init__(self, account_sid: Optional[str] = None, auth_token: Optional[str] = None,
                 from_number: Optional[str] = None, http=None, timeout: float = 10):
        self.account_sid = account_sid or Config.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or Config.TWILIO_AUTH_TOKEN
        self.from_number = from_number or Config.TWILIO_PHONE_NUMBER
        self.http = http or requests
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, recipient: str, text: str) -> str:
        """Send one message and return Twilio's message SID."""
        to = normalize_e164(recipient)
        if not self.configured:
            raise DeliveryFailure(to, "Twilio credentials are not configured")

        url = f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            response = self.http.post(
                url,
                data={"From": self.from_number, "To": to, "Body": text},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise DeliveryFailure(to, str(e))

        if response.status_code >= 400:
            try:
                detail = response.json().get("message") or response.text
            except ValueError:
                detail = response.text
            raise DeliveryFailure(to, f"Twilio error {response.status_code}: {detail}")

        sid = response.json().get("sid", "")
        logger.info(f"[SMS] sent {len(text)} chars to {mask_pii(to)} sid={sid}")
        return sid
