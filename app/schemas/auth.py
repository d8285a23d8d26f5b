from typing import Any, Optional

from pydantic import BaseModel, Field

from app.schemas.my_base_model import CustomBaseModel


class NonceResponse(CustomBaseModel):
    """Response model for nonce generation - output"""

    nonce: str = ""
    message: str = ""
    timestamp: int = 0


class WalletLoginRequest(BaseModel):
    """Request model for wallet login - input validation

    Fields are optional here so that missing values are reported by the login
    pipeline with its own messages instead of a generic 422.
    """

    address: Optional[str] = Field(None, description="Flow account address (0x + 16 hex)")
    signature: Optional[str] = Field(None, description="Signature of the message (hex, 0x-hex or base64)")
    message: Optional[str] = Field(None, description="Signed challenge message, plain or hex encoded")
    timestamp: Any = Field(None, description="Client time in epoch milliseconds")
    nonce: Optional[str] = Field(None, description="Nonce returned by /auth/generate-nonce")


class AuthResponse(CustomBaseModel):
    """Response model for authentication - output"""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = 0
    address: str
    user_id: str
    role: str = "user"
    wallet_type: str
    issued_at: str = ""
    expires_at: str = ""


class TokenVerifyRequest(BaseModel):
    token: Optional[str] = Field(None, description="JWT to check")


class TokenVerifyResponse(CustomBaseModel):
    valid: bool = True
    address: str = ""
    user_id: str = ""
    role: str = ""
    wallet_type: Optional[str] = None
    issued_at: str = ""
    expires_at: str = ""


class CurrentUserResponse(CustomBaseModel):
    user_id: str
    address: str
    role: str
    wallet_type: Optional[str] = None


class NonceStatsResponse(CustomBaseModel):
    """Monitoring snapshot of the nonce store"""

    total: int = 0
    active: int = 0
    used: int = 0
    expired: int = 0
