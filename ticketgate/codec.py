# ticketgate/codec.py
"""
Token codec: binds a purchase id to the server's secret key.

    signed value = "<purchase_id>:<base64(HMAC-SHA256(purchase_id, key))>"

Pure functions, no state. The key is checked once at startup with
`check_key`; per-call failures in `verify` just mean "not valid".
"""
from __future__ import annotations
import base64
import hashlib
import hmac
from typing import Optional, Tuple

from .errors import SigningKeyError
from .helpers import ct_equal

SEPARATOR = ":"


def check_key(secret_key: Optional[str]) -> str:
    if not secret_key:
        raise SigningKeyError("SECRET_KEY must be a non-empty string")
    if "sha256" not in hashlib.algorithms_available:
        raise SigningKeyError("HMAC-SHA256 is not available in this runtime")
    return secret_key


def sign(purchase_id: str, secret_key: str) -> str:
    check_key(secret_key)
    mac = hmac.new(
        secret_key.encode("utf-8"),
        purchase_id.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(mac).decode()


def verify(purchase_id: str, mac: str, secret_key: str) -> bool:
    try:
        expected = sign(purchase_id, secret_key)
        return ct_equal(expected, mac)
    except (SigningKeyError, ValueError, TypeError, AttributeError):
        return False


def token_value(purchase_id: str, secret_key: str) -> str:
    return f"{purchase_id}{SEPARATOR}{sign(purchase_id, secret_key)}"


def split_token(value: Optional[str]) -> Optional[Tuple[str, str]]:
    # exactly "<id>:<mac>", both parts non-empty, printable ASCII only
    if not value:
        return None
    value = value.strip()
    if not value.isascii() or not value.isprintable():
        return None
    parts = value.split(SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]
