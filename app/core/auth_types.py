"""Value objects shared by the wallet authentication pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AuthState(str, Enum):
    RECEIVED = "received"
    STRUCTURE_VALID = "structure_valid"
    TIMESTAMP_VALID = "timestamp_valid"
    NONCE_VALID = "nonce_valid"
    ADDRESS_VALID = "address_valid"
    SIGNATURE_NORMALIZED = "signature_normalized"
    KEYS_RESOLVED = "keys_resolved"
    SIGNATURE_VERIFIED = "signature_verified"
    NONCE_CONSUMED = "nonce_consumed"
    CREDENTIAL_ISSUED = "credential_issued"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthAttempt:
    """One signed-challenge login attempt as submitted by the wallet."""

    address: Optional[str]
    signature: Optional[str]
    message: Optional[str]
    timestamp: Any
    nonce: Optional[str]


@dataclass(frozen=True)
class NonceRecord:
    """Persisted nonce. All timestamps are epoch milliseconds."""

    value: str
    created_at: int
    expires_at: int
    used: bool = False
    used_at: Optional[int] = None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at


@dataclass(frozen=True)
class NonceChallenge:
    nonce: str
    message: str
    timestamp: int


@dataclass(frozen=True)
class NonceStats:
    total: int = 0
    active: int = 0
    used: int = 0
    expired: int = 0


@dataclass(frozen=True)
class AccountKey:
    """A key registered on a ledger account."""

    index: int
    public_key: str
    revoked: bool = False
    signing_algorithm: str = "ECDSA_P256"
    hashing_algorithm: str = "SHA3_256"
    weight: int = 1000


@dataclass(frozen=True)
class FlowAccount:
    address: str
    keys: List[AccountKey] = field(default_factory=list)


@dataclass(frozen=True)
class CompositeSignature:
    """Signature over a user message, attributed to one key of an account."""

    address: str
    key_index: int
    signature: bytes


@dataclass(frozen=True)
class SessionCredential:
    token: str
    subject: str
    claims: Dict[str, Any]
    issued_at: int
    expires_at: int

    @property
    def expires_in(self) -> int:
        return self.expires_at - self.issued_at


@dataclass(frozen=True)
class AuthResult:
    success: bool
    state: AuthState
    address: Optional[str] = None
    user_id: Optional[str] = None
    role: Optional[str] = None
    wallet_type: Optional[str] = None
    token: Optional[str] = None
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None
    expires_in: Optional[int] = None
    reason: Optional[str] = None
    detail: Optional[str] = None
    status_code: int = 200
    rejected_at: Optional[AuthState] = None

    @classmethod
    def succeeded(cls, address: str, wallet_type: str, credential: SessionCredential) -> "AuthResult":
        return cls(
            success=True,
            state=AuthState.CREDENTIAL_ISSUED,
            address=address,
            user_id=credential.subject,
            role=credential.claims.get("role"),
            wallet_type=wallet_type,
            token=credential.token,
            issued_at=credential.issued_at,
            expires_at=credential.expires_at,
            expires_in=credential.expires_in,
        )

    @classmethod
    def rejected(
        cls, reason: str, detail: str, status_code: int, rejected_at: Optional[AuthState] = None
    ) -> "AuthResult":
        return cls(
            success=False,
            state=AuthState.REJECTED,
            rejected_at=rejected_at,
            reason=reason,
            detail=detail,
            status_code=status_code,
        )
