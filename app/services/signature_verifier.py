"""
Wallet Signature Verification

SignatureVerifier.try_verify() checks a signature against ONE candidate key of an
account. It never raises for a bad signature (returns False and logs); only
infrastructure failures of the underlying primitive (ledger unreachable) propagate,
as InfrastructureError.

The default primitive, FlowUserSignaturePrimitive, reproduces FCL's
verifyUserSignatures locally:
1. Fetch the account's keys from the access node
2. Prefix the message with the user domain tag ("FLOW-V0.0-user", zero padded to 32 bytes)
3. Hash with the key's hashing algorithm (SHA2_256 or SHA3_256)
4. Verify the raw r||s ECDSA signature on the key's curve (P-256 or secp256k1)
5. Accept when the summed weight of the keys that verified reaches the threshold (1000)
"""

import hashlib
import logging
from typing import Callable, Dict, List, Protocol, Sequence

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature

from app.core.auth_types import AccountKey, CompositeSignature
from app.core.config import settings
from app.core.errors import InfrastructureError
from app.services.account_keys import AccountDirectory

logger = logging.getLogger(__name__)

USER_DOMAIN_TAG = b"FLOW-V0.0-user".ljust(32, b"\x00")

CURVES: Dict[str, ec.EllipticCurve] = {
    "ECDSA_P256": ec.SECP256R1(),
    "ECDSA_secp256k1": ec.SECP256K1(),
}

HASHERS: Dict[str, Callable[[bytes], bytes]] = {
    "SHA2_256": lambda data: hashlib.sha256(data).digest(),
    "SHA3_256": lambda data: hashlib.sha3_256(data).digest(),
}

# ECDSA signs the raw 32-byte digest, the hash family only matters when computing it
_PREHASHED_32 = ec.ECDSA(Prehashed(hashes.SHA256()))


class VerificationPrimitive(Protocol):
    def verify(self, message: bytes, signatures: Sequence[CompositeSignature]) -> bool:
        ...


def _load_public_key(key: AccountKey) -> ec.EllipticCurvePublicKey:
    curve = CURVES.get(key.signing_algorithm)
    if curve is None:
        raise UnsupportedAlgorithm(f"unsupported signing algorithm: {key.signing_algorithm}")
    raw = bytes.fromhex(key.public_key.removeprefix("0x"))
    return ec.EllipticCurvePublicKey.from_encoded_point(curve, b"\x04" + raw)


def verify_with_key(key: AccountKey, message: bytes, signature: bytes) -> bool:
    """Check one raw r||s signature over domain-tagged message with one account key."""
    hasher = HASHERS.get(key.hashing_algorithm)
    if hasher is None:
        logger.info("unsupported hashing algorithm %s on key %s", key.hashing_algorithm, key.index)
        return False
    if len(signature) != 64:
        return False
    try:
        public_key = _load_public_key(key)
        der = encode_dss_signature(
            int.from_bytes(signature[:32], "big"),
            int.from_bytes(signature[32:], "big"),
        )
        public_key.verify(der, hasher(USER_DOMAIN_TAG + message), _PREHASHED_32)
    except InvalidSignature:
        return False
    except (ValueError, UnsupportedAlgorithm) as exc:
        logger.info("key %s cannot be used for verification: %s", key.index, exc)
        return False
    return True


class FlowUserSignaturePrimitive:
    """verify(message, [CompositeSignature]) backed by the account directory and cryptography."""

    def __init__(self, directory: AccountDirectory, weight_threshold: int = settings.FLOW_SIGNATURE_WEIGHT_THRESHOLD) -> None:
        self.directory = directory
        self.weight_threshold = weight_threshold

    def verify(self, message: bytes, signatures: Sequence[CompositeSignature]) -> bool:
        if not signatures:
            return False
        accounts = {}
        verified_weight = 0
        counted: List[tuple] = []
        for composite in signatures:
            if composite.address not in accounts:
                # AccountLookupError propagates: the ledger being down is not a bad signature
                accounts[composite.address] = self.directory.get_account(composite.address)
            keys = {key.index: key for key in accounts[composite.address].keys}
            key = keys.get(composite.key_index)
            if key is None or key.revoked:
                logger.info("key %s is missing or revoked", composite.key_index)
                return False
            if not verify_with_key(key, message, composite.signature):
                return False
            ident = (composite.address, composite.key_index)
            if ident not in counted:
                counted.append(ident)
                verified_weight += key.weight
        if verified_weight < self.weight_threshold:
            logger.info("verified key weight %s below threshold %s", verified_weight, self.weight_threshold)
            return False
        return True


class SignatureVerifier:
    def __init__(self, primitive: VerificationPrimitive) -> None:
        self.primitive = primitive

    def try_verify(self, address: str, message: str, signature_hex: str, key_index: int) -> bool:
        """
        Verify `message` against a single key of `address`.

        Args:
            address: Flow account address ("0x" + 16 hex)
            message: Decoded challenge text that was signed
            signature_hex: Canonical signature (lower-case hex, no prefix)
            key_index: Account key to attribute the signature to

        Returns:
            True if the primitive accepted the signature, False otherwise

        Raises:
            InfrastructureError: if the primitive could not reach its backend
        """
        try:
            signature = bytes.fromhex(signature_hex)
        except ValueError:
            logger.info("signature is not hex, key %s skipped", key_index)
            return False

        composite = CompositeSignature(address=address, key_index=key_index, signature=signature)
        try:
            is_valid = bool(self.primitive.verify(message.encode("utf-8"), [composite]))
        except InfrastructureError:
            raise
        except (InvalidSignature, UnsupportedAlgorithm, ValueError, TypeError) as exc:
            logger.info("signature verification failed with key %s: %s", key_index, exc)
            return False

        logger.debug("signature verification with key %s: %s", key_index, is_valid)
        return is_valid
