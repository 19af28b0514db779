from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base


class AccessToken(Base):
    """
    Access token record - kept for revocation and expiry only.

    The token itself is self-contained and never stored; token_hash is the
    SHA-256 digest of the issued token text.
    """

    __tablename__ = "access_tokens"

    id = Column(Integer, primary_key=True, index=True)
    api_key_id = Column(Integer, ForeignKey("api_keys.id"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_revoked = Column(Boolean, default=False, nullable=False)

    # Relationships
    api_key = relationship("ApiKey", back_populates="access_tokens")
