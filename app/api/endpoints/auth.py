from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

import jwt
from fastapi import APIRouter, Depends, HTTPException, status

import app.schemas.auth as schemas
from app.core.auth_types import AuthAttempt, AuthResult
from app.core.dependencies import (
    get_blocto_authenticator,
    get_codec,
    get_credential_issuer,
    get_current_user,
    get_flow_authenticator,
    get_nonce_store,
    require_role,
)
from app.core.errors import InfrastructureError
from app.core.jwt_utils import CredentialIssuer, JwtTokenCodec
from app.services.nonce_store import NonceStore
from app.services.wallet_auth import WalletAuthenticator

router = APIRouter()
group_tags: List[str | Enum] = ["Auth"]


def _iso(epoch_seconds: int) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def _login(authenticator: WalletAuthenticator, body: schemas.WalletLoginRequest) -> schemas.AuthResponse:
    attempt = AuthAttempt(
        address=body.address,
        signature=body.signature,
        message=body.message,
        timestamp=body.timestamp,
        nonce=body.nonce,
    )
    result: AuthResult = authenticator.verify(attempt)
    if not result.success:
        raise HTTPException(status_code=result.status_code, detail=result.detail)

    return schemas.AuthResponse(
        access_token=result.token,
        expires_in=result.expires_in,
        address=result.address,
        user_id=result.user_id,
        role=result.role,
        wallet_type=result.wallet_type,
        issued_at=_iso(result.issued_at),
        expires_at=_iso(result.expires_at),
    )


@router.post(
    "/generate-nonce",
    tags=group_tags,
    response_model=schemas.NonceResponse,
    status_code=status.HTTP_200_OK,
)
def generate_nonce(
    authenticator: WalletAuthenticator = Depends(get_flow_authenticator),
) -> schemas.NonceResponse:
    """
    Issue a single-use nonce and the message the wallet must sign.

    The nonce is valid for NONCE_EXPIRY_SECONDS (5 minutes) and for either login endpoint.
    """
    try:
        challenge = authenticator.generate_nonce()
    except InfrastructureError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.public_detail)
    return schemas.NonceResponse(nonce=challenge.nonce, message=challenge.message, timestamp=challenge.timestamp)


@router.post(
    "/flow-login",
    tags=group_tags,
    response_model=schemas.AuthResponse,
)
def flow_login(
    body: schemas.WalletLoginRequest,
    authenticator: WalletAuthenticator = Depends(get_flow_authenticator),
) -> schemas.AuthResponse:
    """
    Log in with a Flow wallet signature over the challenge message.

    Errors:
    - 400: missing field, stale timestamp, malformed address
    - 401: invalid or expired nonce, signature verification failed
    - 500: storage or access node failure
    """
    return _login(authenticator, body)


@router.post(
    "/blocto-login",
    tags=group_tags,
    response_model=schemas.AuthResponse,
)
def blocto_login(
    body: schemas.WalletLoginRequest,
    authenticator: WalletAuthenticator = Depends(get_blocto_authenticator),
) -> schemas.AuthResponse:
    """Same as /flow-login, but the signature is always checked against key 0."""
    return _login(authenticator, body)


@router.post(
    "/verify-token",
    tags=group_tags,
    response_model=schemas.TokenVerifyResponse,
)
def verify_token(
    body: schemas.TokenVerifyRequest,
    codec: JwtTokenCodec = Depends(get_codec),
) -> schemas.TokenVerifyResponse:
    """Check a session token and return what it says about its holder."""
    if not body.token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token is required")

    try:
        payload = codec.decode(body.token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return schemas.TokenVerifyResponse(
        valid=True,
        address=payload.get("address", ""),
        user_id=payload.get("sub", ""),
        role=payload.get("role", ""),
        wallet_type=payload.get("walletType"),
        issued_at=_iso(payload["iat"]),
        expires_at=_iso(payload["exp"]),
    )


@router.post(
    "/refresh",
    tags=group_tags,
    response_model=schemas.AuthResponse,
)
def refresh(
    user: Dict[str, Any] = Depends(get_current_user),
    issuer: CredentialIssuer = Depends(get_credential_issuer),
) -> schemas.AuthResponse:
    """
    Exchange a valid session token for a fresh one with a new expiry.

    Address, role and wallet type are carried over from the current token.
    """
    wallet_type = user.get("walletType") or "flow"
    try:
        credential = issuer.issue(user["address"], wallet_type, {"role": user.get("role", issuer.default_role)})
    except InfrastructureError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.public_detail)

    return schemas.AuthResponse(
        access_token=credential.token,
        expires_in=credential.expires_in,
        address=user["address"],
        user_id=credential.subject,
        role=credential.claims.get("role", ""),
        wallet_type=wallet_type,
        issued_at=_iso(credential.issued_at),
        expires_at=_iso(credential.expires_at),
    )


@router.get(
    "/me",
    tags=group_tags,
    response_model=schemas.CurrentUserResponse,
)
def me(user: Dict[str, Any] = Depends(get_current_user)) -> schemas.CurrentUserResponse:
    return schemas.CurrentUserResponse(
        user_id=user["sub"],
        address=user["address"],
        role=user.get("role", ""),
        wallet_type=user.get("walletType"),
    )


@router.get(
    "/nonce-stats",
    tags=group_tags,
    response_model=schemas.NonceStatsResponse,
)
def nonce_stats(
    _: Dict[str, Any] = Depends(require_role("admin")),
    store: NonceStore = Depends(get_nonce_store),
) -> schemas.NonceStatsResponse:
    """Counts of active, used and expired nonces (admin only)."""
    try:
        stats = store.stats()
    except InfrastructureError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.public_detail)
    return schemas.NonceStatsResponse.from_record(stats)
