"""Security helpers: PII masking and inbound webhook signature checks."""
import base64
import hashlib
import hmac
import re
from typing import Mapping

from .errors import SignatureInvalid


def mask_pii(text: str) -> str:
    """Mask long digit runs (phone numbers) down to their last four digits."""
    def _mask(m):
        digits = m.group(0)
        return "*" * (len(digits) - 4) + digits[-4:]
    return re.sub(r"\+?\d{7,}", _mask, text or "")


def compute_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Twilio-style signature: HMAC-SHA1 over the URL plus sorted key/value pairs."""
    payload = url + "".join(f"{k}{params[k]}" for k in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(auth_token: str, signature: str, url: str, params: Mapping[str, str]) -> None:
    if not auth_token:
        raise SignatureInvalid("no auth token configured")
    if not signature:
        raise SignatureInvalid("missing signature header")
    expected = compute_signature(auth_token, url, params)
    if not hmac.compare_digest(expected, signature):
        raise SignatureInvalid("signature mismatch")
