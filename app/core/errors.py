"""
Authentication error taxonomy.

Every rejection inside the wallet login pipeline is raised as an ``AuthError``
subclass. The orchestrator turns them into failed ``AuthResult`` objects and the
HTTP layer maps ``status_code`` onto an ``HTTPException``.

Disclosure rules:
- StructuralError, TimestampError, AddressFormatError: message is returned verbatim
- NonceError: one opaque message for not-found / used / expired
- SignatureError: one generic message, never the key indices that were tried
- InfrastructureError: logged internally, caller only sees a generic internal error
"""

from fastapi import status


class AuthError(Exception):
    """Base class for every authentication failure."""

    reason: str = "unknown"
    status_code: int = status.HTTP_400_BAD_REQUEST
    public_message: str | None = None

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.public_message or "Authentication failed"
        super().__init__(self.detail)

    @property
    def public_detail(self) -> str:
        """Message that is safe to hand back to the caller."""
        return self.public_message or self.detail


class StructuralError(AuthError):
    """A required field is missing or has the wrong type."""

    reason = "structural"


class TimestampError(AuthError):
    """The client timestamp is outside the accepted window."""

    reason = "timestamp"


class NonceError(AuthError):
    """Nonce is unknown, already used, or expired. Deliberately indistinguishable."""

    reason = "nonce"
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Invalid or expired nonce"


class AddressFormatError(AuthError):
    """The address does not follow the chain address grammar."""

    reason = "address_format"


class SignatureError(AuthError):
    """The signature could not be normalized or no key candidate verified it."""

    reason = "signature"
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Signature verification failed"


class InfrastructureError(AuthError):
    """A collaborator (storage, ledger, token signer) failed. Not evidence of an attack."""

    reason = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message = "Internal authentication error"


class NonceStoreError(InfrastructureError):
    """The nonce persistence backend failed."""


class AccountLookupError(InfrastructureError):
    """The ledger account directory could not be queried."""


class CredentialIssueError(InfrastructureError):
    """The session credential could not be issued."""
