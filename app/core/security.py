from dataclasses import dataclass
from hashlib import sha256
from typing import Optional
from jose import JWTError, jwt
from app.config import Settings


@dataclass(frozen=True)
class TokenConfig:
    """Signing configuration, built once at startup and never mutated."""

    secret: bytes
    algorithm: str = "HS256"
    lifetime_seconds: int = 3600
    max_lifetime_seconds: int = 3600

    def __post_init__(self):
        if not self.secret:
            raise ValueError("token signing secret must not be empty")
        if self.lifetime_seconds <= 0 or self.max_lifetime_seconds <= 0:
            raise ValueError("token lifetimes must be positive")

    @property
    def effective_lifetime_seconds(self) -> int:
        return min(self.lifetime_seconds, self.max_lifetime_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenConfig":
        return cls(
            secret=settings.get_signing_secret(),
            algorithm=settings.ALGORITHM,
            lifetime_seconds=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            max_lifetime_seconds=settings.ACCESS_TOKEN_MAX_LIFETIME_MINUTES * 60,
        )


def hash_token(token: str) -> str:
    """SHA-256 hex digest of the token text, used as its durable identity."""
    return sha256(token.encode("utf-8")).hexdigest()


def create_access_token(claims: dict, config: TokenConfig) -> str:
    """Sign claims into a JWT."""
    return jwt.encode(claims, config.secret, algorithm=config.algorithm)


def decode_access_token(token: str, config: TokenConfig) -> Optional[dict]:
    """
    Verify the signature of a JWT and return its claims.

    Expiry is not checked here; callers compare "exp" against their own
    clock. Returns None if the token is malformed or the signature is bad.
    """
    if not token:
        return None
    try:
        return jwt.decode(
            token,
            config.secret,
            algorithms=[config.algorithm],
            options={"verify_exp": False, "verify_nbf": False}
        )
    except JWTError:
        return None
