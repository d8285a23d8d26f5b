"""
FastAPI Authentication Dependencies
This module builds the wallet login component graph and provides the dependency
functions injected into route handlers.
Usage in endpoints:
    @router.get("/protected")
    def protected_route(user: Dict[str, Any] = Depends(get_current_user)):
        # user holds the verified JWT claims (sub, address, role, walletType)
        return {"user": user["address"]}
Flow:
1. Client sends request with Authorization: Bearer <token> header
2. FastAPI calls get_current_user() dependency
3. _extract_token() extracts token from header
4. verify_token() validates the JWT (from jwt_utils.py)
5. Returns the claims to the route handler

Components (nonce store, account directory, credential issuer) are created once
per process; tests replace them through app.dependency_overrides.
"""

from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, status

from app.core.jwt_utils import CredentialIssuer, JwtTokenCodec, get_token_codec, verify_token
from app.services.account_keys import AccountDirectory, AccountKeyResolver, FlowAccessClient
from app.services.nonce_store import NonceStore, build_nonce_store
from app.services.wallet_auth import WalletAuthenticator, build_profile


@lru_cache
def get_nonce_store() -> NonceStore:
    return build_nonce_store()


@lru_cache
def get_account_directory() -> AccountDirectory:
    return FlowAccessClient()


def get_codec() -> JwtTokenCodec:
    return get_token_codec()


def get_credential_issuer(codec: JwtTokenCodec = Depends(get_codec)) -> CredentialIssuer:
    return CredentialIssuer(codec)


def _authenticator(wallet_type: str) -> Callable[..., WalletAuthenticator]:
    def provider(
        store: NonceStore = Depends(get_nonce_store),
        directory: AccountDirectory = Depends(get_account_directory),
        issuer: CredentialIssuer = Depends(get_credential_issuer),
    ) -> WalletAuthenticator:
        return WalletAuthenticator(
            profile=build_profile(wallet_type, directory),
            nonce_store=store,
            resolver=AccountKeyResolver(directory),
            issuer=issuer,
        )

    provider.__name__ = f"get_{wallet_type}_authenticator"
    return provider


get_flow_authenticator = _authenticator("flow")
get_blocto_authenticator = _authenticator("blocto")


def _extract_token(authorization: Optional[str], codec: JwtTokenCodec) -> Dict[str, Any]:
    """
    Extract JWT token from Authorization header.
    Supports both "Bearer <token>" and plain token formats.
    Args:
        authorization: The Authorization header value (e.g., "Bearer eyJ...")
    Returns:
        The verified token claims
    Raises:
        HTTPException 401: If Authorization header is missing or invalid
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )

    authorization = authorization.strip()
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    else:
        token = authorization
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header",
        )

    return verify_token(token, codec)


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    codec: JwtTokenCodec = Depends(get_codec),
) -> Dict[str, Any]:
    """
    returning the JWT claims of the caller.
    """
    return _extract_token(authorization, codec)


def require_role(*roles: str) -> Callable[..., Dict[str, Any]]:
    """Dependency that only lets callers with one of `roles` through (403 otherwise)."""

    def checker(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker
