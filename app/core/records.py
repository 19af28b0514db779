"""
Plain records exchanged between the credential store and the services.

They decouple the key/token logic from the ORM so that any store
implementation can back it.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class ApiKeyRecord:
    id: int
    user_id: int
    key_hash: str
    key_prefix: str
    environment: str
    version: int
    scopes: FrozenSet[str]
    is_active: bool
    issued_at: datetime
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    usage_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True)
class UserRecord:
    id: int
    username: str
    email: str


@dataclass(frozen=True)
class TokenRevocation:
    """Revocation state of a registered access token."""

    is_revoked: bool
    expires_at: datetime


@dataclass(frozen=True)
class UsageLogEntry:
    endpoint: str
    success: bool
    created_at: datetime
    api_key_id: Optional[int] = None
    token_hash: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error_code: Optional[str] = None


@dataclass(frozen=True)
class VerifiedToken:
    """Identity and scopes carried by a token that passed every check."""

    user_id: int
    api_key_id: int
    scopes: FrozenSet[str]
    issued_at: datetime
    expires_at: datetime
    token_hash: str
    token_id: str = ""

    def has_scopes(self, required) -> bool:
        return set(required).issubset(self.scopes)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    scopes: FrozenSet[str] = field(default_factory=frozenset)
