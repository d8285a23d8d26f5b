"""
Wallet Signature Encoding Utilities

Wallets hand signatures to the frontend in whatever encoding their SDK prefers:
- "0x"-prefixed hex (FCL, most Flow wallets)
- bare hex
- base64 (some mobile / Blocto flows)

Everything downstream (key candidates, verification primitive) works on one
canonical form: lower-case hex without prefix. normalize_signature() produces it
and returns None for anything it does not recognise, so callers can treat a bad
encoding as a failed signature instead of crashing.

Messages are handled the same way: some wallets sign the raw challenge text,
others hex-encode it first. decode_message() turns the hex form back into text.
"""

import base64
import binascii
import re
import secrets
from typing import Optional

NONCE_NUM_BYTES = 32  # 32 bytes = 64 hex characters

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_HEX_PREFIXES = ("0x", "0X")


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """
    Generate a cryptographically secure random nonce.

    Args:
        num_bytes: Number of random bytes (default: 32 = 64 hex chars). Values
            below 16 bytes would drop under 128 bits of entropy and are raised
            to the default.

    Returns:
        Hex-encoded random string (e.g., "a1b2c3d4...")
    """
    if num_bytes < 16:
        num_bytes = NONCE_NUM_BYTES
    return secrets.token_hex(num_bytes)


def is_hex_string(value: Optional[str]) -> bool:
    """True for a non-empty, even-length string of hex digits."""
    if not value or not isinstance(value, str):
        return False
    return len(value) % 2 == 0 and _HEX_RE.fullmatch(value) is not None


def _strip_hex_prefix(value: str) -> Optional[str]:
    """Helper: return the body of a 0x-prefixed string, or None if unprefixed."""
    if value.startswith(_HEX_PREFIXES):
        return value[2:]
    return None


def _decode_base64(value: str) -> Optional[bytes]:
    """
    Helper: strict base64 decode.

    The decoded bytes are re-encoded and compared with the input so that strings
    which merely happen to parse (missing padding, stray characters) are refused.
    """
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None
    if not decoded or base64.b64encode(decoded).decode("ascii") != value:
        return None
    return decoded


def normalize_signature(raw: Optional[str], expected_bytes: Optional[int] = None) -> Optional[str]:
    """
    Convert a wallet-supplied signature into lower-case hex without prefix.

    Detection order:
    1. prefixed hex ("0x..."): strip the prefix, the rest must be hex
    2. bare hex
    3. base64, accepted only if decode/re-encode reproduces the input

    Args:
        raw: Signature string as received from the wallet
        expected_bytes: Optional exact decoded length (Flow ECDSA signatures are 64 bytes)

    Returns:
        Canonical hex string, or None when the input is not a recognised encoding.
        Already-canonical input is returned unchanged.
    """
    if not raw or not isinstance(raw, str):
        return None
    value = raw.strip()

    body = _strip_hex_prefix(value)
    if body is not None:
        if not is_hex_string(body):
            return None
        canonical = body.lower()
    elif is_hex_string(value):
        canonical = value.lower()
    else:
        decoded = _decode_base64(value)
        if decoded is None:
            return None
        canonical = decoded.hex()

    if expected_bytes is not None and len(canonical) != expected_bytes * 2:
        return None
    return canonical


def decode_message(message: str) -> str:
    """
    Return the text that was actually signed.

    Hex-encoded messages are decoded to UTF-8. If the hex does not decode to valid
    UTF-8 the message was plain text that happens to look like hex, so it is used as-is.
    """
    if not is_hex_string(message):
        return message
    try:
        return bytes.fromhex(message).decode("utf-8")
    except ValueError:
        return message
