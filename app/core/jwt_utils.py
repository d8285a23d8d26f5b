"""
JWT Token Utilities

This module issues and verifies the session credential handed out after a wallet
login succeeds.

Flow:
1. The wallet signature is verified -> CredentialIssuer.issue() signs a JWT
2. Client sends the JWT in the Authorization header -> verify_token() validates it
3. Protected endpoints use get_current_user() from dependencies.py to read the claims

The JWT contains:
- sub: Stable user id derived from the address ("user_" + sha256(address)[:16])
- address: The authenticated wallet address
- role: Authorization role (default "user")
- walletType: Which wallet profile authenticated the user (flow, blocto)
- iat / exp: Issued at / expiration (ACCESS_TOKEN_EXPIRE_SECONDS, 24h by default)
"""

import hashlib
import logging
import time
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import HTTPException, status

from app.core.auth_types import SessionCredential
from app.core.config import settings
from app.core.errors import CredentialIssueError

logger = logging.getLogger(__name__)


def derive_user_id(address: str, length: int = settings.USER_ID_HASH_LENGTH) -> str:
    """Same address, same id. No user table is involved."""
    return "user_" + hashlib.sha256(address.encode("utf-8")).hexdigest()[:length]


class JwtTokenCodec:
    """sign(claims) -> token / verify(token) -> claims | None"""

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: str = settings.ENCODE_ALGORITHM,
        lifetime_seconds: int = settings.ACCESS_TOKEN_EXPIRE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        secret = secret if secret is not None else settings.ENCODE_KEY
        if not secret:
            raise RuntimeError("ENCODE_KEY is not configured")
        self._secret = secret
        self.algorithm = algorithm
        self.lifetime_seconds = int(lifetime_seconds)
        self._clock = clock

    def sign(self, claims: Dict[str, Any]) -> str:
        now = int(self._clock())
        payload: Dict[str, Any] = {"iat": now, "exp": now + self.lifetime_seconds}
        payload.update(claims)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError."""
        return jwt.decode(token, self._secret, algorithms=[self.algorithm])

    def verify(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return self.decode(token)
        except jwt.InvalidTokenError as exc:
            logger.debug("token rejected: %s", exc)
            return None


class CredentialIssuer:
    def __init__(self, codec: JwtTokenCodec, default_role: str = settings.DEFAULT_ROLE) -> None:
        self.codec = codec
        self.default_role = default_role

    def issue(
        self, address: str, wallet_type: str, extra_claims: Optional[Dict[str, Any]] = None
    ) -> SessionCredential:
        """
        Create a session credential for an authenticated wallet address.

        Args:
            address: The wallet address whose signature was verified
            wallet_type: Wallet profile name stored in the walletType claim
            extra_claims: Optional additional claims (may override role)

        Returns:
            SessionCredential with token, claims and iat/exp read back from the token

        Raises:
            CredentialIssueError: If the token cannot be signed or read back
        """
        if not address:
            raise CredentialIssueError("address is required")

        claims: Dict[str, Any] = {
            "sub": derive_user_id(address),
            "address": address,
            "role": self.default_role,
            "walletType": wallet_type,
        }
        if extra_claims:
            claims.update(extra_claims)

        try:
            token = self.codec.sign(claims)
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            raise CredentialIssueError("Token generation failed") from exc

        payload = self.codec.verify(token)
        if not payload or "iat" not in payload or "exp" not in payload:
            raise CredentialIssueError("Token generation failed")

        return SessionCredential(
            token=token,
            subject=payload["sub"],
            claims=payload,
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )


@lru_cache
def get_token_codec() -> JwtTokenCodec:
    return JwtTokenCodec()


def verify_token(token: str, codec: Optional[JwtTokenCodec] = None) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    This is called by protected endpoints to validate the JWT token from the Authorization header.
    Checks token signature, expiration, and required payload fields.

    Args:
        token: The JWT token string from Authorization header
        codec: Token codec to use (defaults to the one built from settings)

    Returns:
        Decoded JWT payload dictionary containing sub, address, role and walletType

    Raises:
        HTTPException 401: If token is missing, expired, invalid, or missing address
    """
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    codec = codec or get_token_codec()
    try:
        payload = codec.decode(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    if "address" not in payload or "sub" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    return payload
