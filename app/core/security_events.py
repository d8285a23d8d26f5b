"""
Security event logger.

Login outcomes are emitted on the ``app.security`` logger with a stable
``event_id`` so they can be filtered and alerted on. Nonce values are truncated
and signatures are never logged.
"""

import logging
from typing import Any, Optional

security_log = logging.getLogger("app.security")

_NONCE_PREVIEW_LENGTH = 8


def _emit(event_id: str, message: str, *args: Any, severity: str = "INFO", **extra: Any) -> None:
    data = {"event_id": event_id, "severity": severity}
    data.update(extra)
    security_log.log(getattr(logging, severity.upper(), logging.INFO), message, *args, extra=data)


def _preview(nonce: Optional[str]) -> str:
    if not nonce:
        return ""
    if len(nonce) > _NONCE_PREVIEW_LENGTH:
        return nonce[:_NONCE_PREVIEW_LENGTH] + "..."
    return nonce


def nonce_issued(wallet_type: str, expires_at: int) -> None:
    _emit(
        "app.security.nonce_issued",
        "Nonce issued for %s login",
        wallet_type,
        wallet_type=wallet_type,
        expires_at=expires_at,
        severity="DEBUG",
    )


def nonce_rejected(wallet_type: str, nonce: Optional[str], address: Optional[str]) -> None:
    """Unknown, used and expired nonces all land here; the store does not say which."""
    _emit(
        "app.security.nonce_rejected",
        "Invalid or expired nonce for %s login",
        wallet_type,
        wallet_type=wallet_type,
        nonce_preview=_preview(nonce),
        address=address,
        severity="WARNING",
    )


def login_succeeded(wallet_type: str, address: str, user_id: str, key_index: int) -> None:
    _emit(
        "app.security.login_succeeded",
        "%s login succeeded for %s",
        wallet_type,
        address,
        wallet_type=wallet_type,
        address=address,
        user_id=user_id,
        key_index=key_index,
    )


def login_rejected(wallet_type: str, reason: str, address: Optional[str], detail: str) -> None:
    _emit(
        "app.security.login_rejected",
        "%s login rejected: %s",
        wallet_type,
        reason,
        wallet_type=wallet_type,
        reason=reason,
        address=address,
        detail=detail,
        severity="WARNING",
    )


def infrastructure_failure(wallet_type: str, component: str, error: Exception) -> None:
    _emit(
        "app.security.infrastructure_failure",
        "%s login failed in %s: %s",
        wallet_type,
        component,
        error,
        wallet_type=wallet_type,
        component=component,
        severity="ERROR",
    )
