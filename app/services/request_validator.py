"""
Request Validator

Checks that a wallet login attempt is well formed before any nonce or signature
work happens. Each check raises the matching AuthError subclass; the orchestrator
calls them in pipeline order:

    check_structure -> check_timestamp -> (nonce) -> check_address
"""

import math
import re
from numbers import Real

from app.core.auth_types import AuthAttempt
from app.core.config import settings
from app.core.errors import AddressFormatError, StructuralError, TimestampError

FLOW_ADDRESS_PREFIX = "0x"
FLOW_ADDRESS_HEX_LENGTH = 16
_FLOW_ADDRESS_BODY_RE = re.compile(r"[0-9a-fA-F]{16}")


class RequestValidator:
    def __init__(self, timestamp_tolerance_seconds: int = settings.TIMESTAMP_TOLERANCE_SECONDS) -> None:
        self.tolerance_ms = int(timestamp_tolerance_seconds) * 1000

    def check_structure(self, attempt: AuthAttempt) -> None:
        """Required fields, in the order they are reported."""
        if not attempt.address:
            raise StructuralError("Address is required")
        if not attempt.signature:
            raise StructuralError("Signature is required")
        if not attempt.message:
            raise StructuralError("Message is required")
        if attempt.timestamp is None or attempt.timestamp == "":
            raise StructuralError("Timestamp is required")
        # bool is a subclass of int, but True is not a timestamp
        if (
            isinstance(attempt.timestamp, bool)
            or not isinstance(attempt.timestamp, Real)
            or not math.isfinite(attempt.timestamp)
        ):
            raise StructuralError("Valid timestamp is required")
        if not attempt.nonce or not str(attempt.nonce).strip():
            raise StructuralError("Nonce is required")

    def check_timestamp(self, timestamp: Real, now_ms: int) -> None:
        """Bound the replay window independently of the nonce TTL."""
        if abs(now_ms - timestamp) > self.tolerance_ms:
            raise TimestampError(
                f"Timestamp is too old or too far in the future. Tolerance: {self.tolerance_ms}ms"
            )

    def check_address(self, address: str) -> None:
        """Flow address grammar: 0x followed by exactly 16 hex characters."""
        if not address.startswith(FLOW_ADDRESS_PREFIX):
            raise AddressFormatError("Address must start with 0x")
        if len(address) != len(FLOW_ADDRESS_PREFIX) + FLOW_ADDRESS_HEX_LENGTH:
            raise AddressFormatError("Address must be 18 characters (0x + 16 hex)")
        if not _FLOW_ADDRESS_BODY_RE.fullmatch(address[len(FLOW_ADDRESS_PREFIX):]):
            raise AddressFormatError("Address must contain only hexadecimal characters")
