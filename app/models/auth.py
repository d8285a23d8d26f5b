from sqlalchemy import BigInteger, Boolean, Column, String

from app.db.base import Base


class AuthNonce(Base):
    """Model for storing wallet authentication nonces.
    Example:
    {
        "nonce": "9f2c...e1",
        "created_at": 1735689600000,
        "expires_at": 1735689900000,
        "used": false,
        "used_at": null
    }
    Timestamps are epoch milliseconds.
    """

    __tablename__ = "auth_nonce"

    nonce = Column(String(128), primary_key=True)
    created_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(BigInteger, nullable=True)
