"""Ed25519 wallet signature verification."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Optional

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

PUBKEY_LENGTH_BYTES = 32
SIGNATURE_LENGTH_BYTES = 64

_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


def decode_wallet(wallet: str) -> Optional[bytes]:
    """Decode a base58 wallet address into its 32 public key bytes."""
    if not isinstance(wallet, str) or not _BASE58_RE.match(wallet):
        return None
    try:
        raw = base58.b58decode(wallet)
    except ValueError:
        return None
    if len(raw) != PUBKEY_LENGTH_BYTES:
        return None
    return raw


def decode_signature(value: Any) -> Optional[bytes]:
    """Accept a signature as raw bytes, a list of byte values or a base64 string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return None
    return None


def verify_signature(message: str, signature: Optional[bytes], wallet: str) -> bool:
    """Verify a detached Ed25519 signature of ``message`` by ``wallet``.

    Malformed input (bad base58, wrong-length signature, non-string message)
    yields ``False``.
    """
    if not isinstance(message, str) or not signature:
        return False
    if len(signature) != SIGNATURE_LENGTH_BYTES:
        return False

    pubkey_bytes = decode_wallet(wallet)
    if pubkey_bytes is None:
        return False

    try:
        pubkey = Ed25519PublicKey.from_public_bytes(pubkey_bytes)
        pubkey.verify(bytes(signature), message.encode("utf-8"))
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False
