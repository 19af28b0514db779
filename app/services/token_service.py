import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from app.core.exceptions import (
    InvalidSignatureException,
    NotFoundException,
    StoreUnavailableException,
    TokenExpiredException,
    TokenRevokedException,
)
from app.core.logging_utils import sanitize_log_message
from app.core.records import ApiKeyRecord, IssuedToken, VerifiedToken
from app.core.security import TokenConfig, create_access_token, decode_access_token, hash_token
from app.services.credential_store import CredentialStore, DuplicateRecordError

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("sub", "api_key_id", "scopes", "iat", "exp", "jti")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Mints, verifies and revokes short-lived access tokens bound to an API key."""

    def __init__(
        self,
        store: CredentialStore,
        config: TokenConfig,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.config = config
        self._clock = clock or utc_now

    async def mint(self, api_key: ApiKeyRecord) -> IssuedToken:
        """
        Issue a signed token carrying a copy of the key's scopes.

        The token record used for revocation is registered through the
        store; if that write fails the token is still returned and the
        failure is logged.
        """
        now = self._clock()
        issued_at = datetime.fromtimestamp(int(now.timestamp()), tz=timezone.utc)
        expires_at = issued_at + timedelta(seconds=self.config.effective_lifetime_seconds)
        if api_key.expires_at is not None and api_key.expires_at < expires_at:
            expires_at = max(issued_at, api_key.expires_at.replace(microsecond=0))

        scopes = frozenset(api_key.scopes)
        claims = {
            "sub": str(api_key.user_id),
            "api_key_id": api_key.id,
            "scopes": sorted(scopes),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": secrets.token_hex(16),
        }
        token = create_access_token(claims, self.config)
        token_hash = hash_token(token)

        try:
            await self.store.insert_token_record(token_hash, api_key.id, issued_at, expires_at)
        except (StoreUnavailableException, DuplicateRecordError) as e:
            logger.error(
                sanitize_log_message(
                    "Token record registration failed; token issued without revocation record",
                    KeyID=api_key.id,
                    Error=type(e).__name__
                )
            )

        logger.debug(sanitize_log_message("Access token minted", KeyID=api_key.id, ExpiresAt=expires_at))
        return IssuedToken(
            token=token,
            token_hash=token_hash,
            issued_at=issued_at,
            expires_at=expires_at,
            scopes=scopes,
        )

    def verify_signature(self, token: str) -> dict:
        """
        Check signature and claim shape only (no I/O, no expiry).

        Raises:
            InvalidSignatureException: bad signature, malformed token or claims
        """
        claims = decode_access_token(token, self.config)
        if claims is None or any(name not in claims for name in REQUIRED_CLAIMS):
            raise InvalidSignatureException()
        if not isinstance(claims["scopes"], list) \
                or not all(isinstance(scope, str) for scope in claims["scopes"]):
            raise InvalidSignatureException()
        try:
            int(claims["sub"])
            int(claims["api_key_id"])
            int(claims["exp"])
            int(claims["iat"])
        except (TypeError, ValueError):
            raise InvalidSignatureException()
        return claims

    async def verify(self, token: str) -> VerifiedToken:
        """
        Verify a token: signature, then expiry, then revocation.

        Raises:
            InvalidSignatureException: signature or structure invalid
            TokenExpiredException: now is at or past the embedded expiry
            TokenRevokedException: the token has been revoked
            StoreUnavailableException: revocation state could not be read
        """
        claims = self.verify_signature(token)

        expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        if self._clock() >= expires_at:
            raise TokenExpiredException()

        token_hash = hash_token(token)
        revocation = await self.store.find_token_revocation(token_hash)
        if revocation is not None and revocation.is_revoked:
            raise TokenRevokedException()

        return VerifiedToken(
            user_id=int(claims["sub"]),
            api_key_id=int(claims["api_key_id"]),
            scopes=frozenset(claims["scopes"]),
            issued_at=datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc),
            expires_at=expires_at,
            token_hash=token_hash,
            token_id=str(claims["jti"]),
        )

    async def revoke(self, token_hash: str) -> None:
        """
        Revoke a token by hash. Revoking twice is a no-op.

        Raises:
            NotFoundException: no token record with this hash
        """
        if not await self.store.revoke_token(token_hash):
            raise NotFoundException()
        logger.info(sanitize_log_message("Access token revoked", HashPrefix=token_hash[:12]))
