"""
Orchestration of the key and token flows.

Every flow starts with a rate-limit decision for its category; nothing
cryptographic or store-related happens for a denied request.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional
from app.core.api_key import KeyCodec, hash_api_key
from app.core.exceptions import (
    CredentialServiceException,
    InsufficientScopeException,
    KeyExpiredException,
    KeyInactiveException,
    KeyNotFoundException,
    RateLimitExceededException,
    StoreUnavailableException,
    UserAlreadyExistsException,
    UserNotFoundException,
)
from app.core.logging_utils import sanitize_log_message
from app.core.rate_limiter import RateLimitDecision, RateLimiter
from app.core.records import ApiKeyRecord, IssuedToken, UsageLogEntry, UserRecord, VerifiedToken
from app.core.security import hash_token
from app.services.credential_store import CredentialStore, DuplicateRecordError
from app.services.token_service import TokenService, utc_now

logger = logging.getLogger(__name__)


class Category:
    """Rate-limit categories used by the gateway flows."""
    AUTHENTICATION = "authentication"
    DATA_READ = "data-read"
    DATA_WRITE = "data-write"
    KEY_GENERATION = "key-generation"
    BATCH = "batch"


@dataclass
class RequestContext:
    """Per-request caller information; collects the rate-limit decision."""

    client_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    rate_limit: Optional[RateLimitDecision] = None


@dataclass(frozen=True)
class IssuedKey:
    key_text: str
    record: ApiKeyRecord
    token: IssuedToken
    # False when rotation could not deactivate the replaced key
    previous_key_deactivated: bool = True


@dataclass(frozen=True)
class KeyValidation:
    record: ApiKeyRecord
    token: IssuedToken


class AuthGateway:
    """Single entry point for credential flows; the only caller of the RateLimiter."""

    def __init__(
        self,
        store: CredentialStore,
        token_service: TokenService,
        rate_limiter: RateLimiter,
        key_codec: Optional[KeyCodec] = None,
        key_prefix: str = "myapp",
        key_environment: str = "dev",
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.token_service = token_service
        self.rate_limiter = rate_limiter
        self.key_codec = key_codec or KeyCodec()
        self.key_prefix = key_prefix
        self.key_environment = key_environment
        self._clock = clock or utc_now

    def gate(self, ctx: RequestContext, category: str) -> RateLimitDecision:
        """
        Consume one unit of the caller's quota for category.

        Raises:
            RateLimitExceededException: quota exhausted
        """
        try:
            decision = self.rate_limiter.enforce(ctx.client_id, category)
        except RateLimitExceededException as e:
            ctx.rate_limit = e.decision
            raise
        ctx.rate_limit = decision
        return decision

    async def _log_usage(
        self,
        ctx: RequestContext,
        category: str,
        success: bool,
        api_key_id: Optional[int] = None,
        token_hash: Optional[str] = None,
        error_code: Optional[str] = None
    ) -> None:
        entry = UsageLogEntry(
            endpoint=category,
            success=success,
            created_at=self._clock(),
            api_key_id=api_key_id,
            token_hash=token_hash,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            error_code=error_code,
        )
        try:
            await self.store.append_usage_log(entry)
        except Exception as e:
            # Audit writes never decide the outcome of the request
            logger.warning(
                sanitize_log_message(
                    "Usage log write dropped",
                    Category=category,
                    Error=type(e).__name__,
                    RequestID=ctx.request_id
                )
            )

    async def _resolve_key(self, key_text: str) -> ApiKeyRecord:
        """Codec check, then store lookup and state checks, in that order."""
        self.key_codec.parse_and_verify(key_text)

        record = await self.store.find_key_by_hash(hash_api_key(key_text))
        if record is None:
            raise KeyNotFoundException()
        if not record.is_active:
            raise KeyInactiveException()
        if record.is_expired(self._clock()):
            raise KeyExpiredException()
        return record

    async def register_user(self, ctx: RequestContext, username: str, email: str) -> UserRecord:
        self.gate(ctx, Category.DATA_WRITE)
        try:
            user = await self.store.create_user(username, email)
        except DuplicateRecordError:
            raise UserAlreadyExistsException()
        logger.info(sanitize_log_message("User registered", UserID=user.id, RequestID=ctx.request_id))
        return user

    async def _issue(
        self,
        user_id: int,
        scopes: Iterable[str],
        expires_at: Optional[datetime],
        version: int
    ) -> IssuedKey:
        now = self._clock()
        generated = self.key_codec.generate(self.key_prefix, self.key_environment, version=version)
        record = await self.store.insert_key(
            user_id=user_id,
            key_hash=generated.key_hash,
            key_prefix=generated.parsed.prefix,
            environment=generated.parsed.environment,
            version=generated.parsed.version,
            scopes=frozenset(scopes),
            issued_at=now,
            expires_at=expires_at,
        )
        token = await self.token_service.mint(record)
        return IssuedKey(key_text=generated.key_text, record=record, token=token)

    async def issue_key(
        self,
        ctx: RequestContext,
        user_id: int,
        scopes: Iterable[str],
        expires_at: Optional[datetime] = None
    ) -> IssuedKey:
        """
        Create a key for a user and mint its first token.

        The key text is only ever returned here; the store keeps its digest.
        """
        self.gate(ctx, Category.KEY_GENERATION)
        if await self.store.get_user(user_id) is None:
            raise UserNotFoundException()

        issued = await self._issue(user_id, scopes, expires_at, version=1)
        logger.info(
            sanitize_log_message(
                "API key issued",
                UserID=user_id,
                KeyID=issued.record.id,
                Scopes=sorted(issued.record.scopes),
                RequestID=ctx.request_id
            )
        )
        return issued

    async def validate_key(self, ctx: RequestContext, key_text: str) -> KeyValidation:
        """
        Exchange key text for an access token.

        Raises:
            RateLimitExceededException, InvalidFormatException,
            ChecksumMismatchException, KeyNotFoundException,
            KeyInactiveException, KeyExpiredException, StoreUnavailableException
        """
        self.gate(ctx, Category.AUTHENTICATION)
        try:
            record = await self._resolve_key(key_text)
        except CredentialServiceException as e:
            await self._log_usage(ctx, Category.AUTHENTICATION, False, error_code=e.error_code)
            raise

        try:
            await self.store.increment_usage(record.id, self._clock())
        except StoreUnavailableException:
            logger.error(
                sanitize_log_message("Usage counter update dropped", KeyID=record.id, RequestID=ctx.request_id)
            )

        token = await self.token_service.mint(record)
        await self._log_usage(
            ctx, Category.AUTHENTICATION, True, api_key_id=record.id, token_hash=token.token_hash
        )
        return KeyValidation(record=record, token=token)

    async def validate_token(
        self,
        ctx: RequestContext,
        token: str,
        category: str = Category.AUTHENTICATION
    ) -> VerifiedToken:
        """
        Verify an access token and return its identity and scopes.

        Raises:
            RateLimitExceededException, InvalidSignatureException,
            TokenExpiredException, TokenRevokedException, StoreUnavailableException
        """
        self.gate(ctx, category)
        try:
            verified = await self.token_service.verify(token)
        except CredentialServiceException as e:
            await self._log_usage(ctx, category, False, error_code=e.error_code)
            raise
        await self._log_usage(
            ctx, category, True, api_key_id=verified.api_key_id, token_hash=verified.token_hash
        )
        return verified

    async def authorize(
        self,
        ctx: RequestContext,
        token: str,
        required_scopes: Iterable[str],
        category: str = Category.DATA_READ
    ) -> VerifiedToken:
        """
        Validate a token and require every scope in required_scopes.

        Raises:
            InsufficientScopeException: a required scope is missing
        """
        verified = await self.validate_token(ctx, token, category=category)
        missing = set(required_scopes) - verified.scopes
        if missing:
            logger.warning(
                sanitize_log_message(
                    "Token missing required scopes",
                    KeyID=verified.api_key_id,
                    Missing=sorted(missing),
                    RequestID=ctx.request_id
                )
            )
            raise InsufficientScopeException(f"Missing required scopes: {', '.join(sorted(missing))}")
        return verified

    async def revoke_token(self, ctx: RequestContext, token: str) -> str:
        """
        Revoke the presented token.

        Returns:
            The revoked token's hash

        Raises:
            NotFoundException: the token was never registered
        """
        self.gate(ctx, Category.DATA_WRITE)
        token_hash = hash_token(token)
        await self.token_service.revoke(token_hash)
        return token_hash

    async def rotate_key(self, ctx: RequestContext, key_text: str) -> IssuedKey:
        """
        Replace a valid key with a new version carrying the same scopes.

        The new key text is only ever returned here, so a failure to
        deactivate the old key is reported on the result instead of raised.
        """
        self.gate(ctx, Category.KEY_GENERATION)
        current = await self._resolve_key(key_text)

        issued = await self._issue(
            current.user_id, current.scopes, current.expires_at, version=current.version + 1
        )
        try:
            await self.store.deactivate_key(current.id)
        except StoreUnavailableException:
            logger.error(
                sanitize_log_message(
                    "Rotated key issued but previous key still active",
                    OldKeyID=current.id,
                    NewKeyID=issued.record.id,
                    RequestID=ctx.request_id
                )
            )
            return replace(issued, previous_key_deactivated=False)
        logger.info(
            sanitize_log_message(
                "API key rotated",
                OldKeyID=current.id,
                NewKeyID=issued.record.id,
                Version=issued.record.version,
                RequestID=ctx.request_id
            )
        )
        return issued

    async def deactivate_key(self, ctx: RequestContext, key_text: str) -> ApiKeyRecord:
        self.gate(ctx, Category.DATA_WRITE)
        record = await self._resolve_key(key_text)
        await self.store.deactivate_key(record.id)
        logger.info(sanitize_log_message("API key deactivated", KeyID=record.id, RequestID=ctx.request_id))
        return record
