# src/stablepay/webhooks.py
import hashlib
import hmac
from typing import Optional, Union

from stablepay.exceptions import SignatureError

SIGNATURE_HEADER = "X-Webhook-Signature"


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(body: Union[str, bytes], secret: str) -> str:
    """Hex HMAC-SHA256 of the exact body bytes."""
    return hmac.new(_as_bytes(secret), _as_bytes(body), hashlib.sha256).hexdigest()


def verify_signature(body: Union[str, bytes], signature: Optional[str], secret: str) -> None:
    """
    Raises SignatureError unless `signature` matches the body.

    An unset secret rejects everything instead of accepting unsigned calls.
    """
    if not secret:
        raise SignatureError("Webhook secret is not configured")
    if not signature:
        raise SignatureError("Invalid signature")
    expected = sign_payload(body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise SignatureError("Invalid signature")
