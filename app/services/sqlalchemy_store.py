import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from app.core.records import ApiKeyRecord, TokenRevocation, UsageLogEntry, UserRecord
from app.models.access_token import AccessToken
from app.models.api_key import ApiKey
from app.models.usage_log import UsageLog
from app.models.user import User
from app.services.credential_store import CredentialStore, DuplicateRecordError

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize to aware UTC.

    SQLite drops tzinfo on round-trip, so values are converted before they
    are bound and naive values read back are UTC.
    """
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_key_record(api_key: ApiKey) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=api_key.id,
        user_id=api_key.user_id,
        key_hash=api_key.key_hash,
        key_prefix=api_key.key_prefix,
        environment=api_key.environment,
        version=api_key.version,
        scopes=frozenset(api_key.scopes or []),
        is_active=api_key.is_active,
        issued_at=_as_utc(api_key.issued_at),
        expires_at=_as_utc(api_key.expires_at),
        last_used_at=_as_utc(api_key.last_used_at),
        usage_count=api_key.usage_count or 0,
    )


class SQLAlchemyCredentialStore(CredentialStore):
    """Credential store backed by async SQLAlchemy; one session per call."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_key_by_hash(self, key_hash: str) -> Optional[ApiKeyRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiKey).where(ApiKey.key_hash == key_hash)
            )
            api_key = result.scalar_one_or_none()
            return _to_key_record(api_key) if api_key else None

    async def increment_usage(self, key_id: int, timestamp: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(ApiKey)
                .where(ApiKey.id == key_id)
                .values(usage_count=ApiKey.usage_count + 1, last_used_at=_as_utc(timestamp))
            )
            await session.commit()

    async def find_token_revocation(self, token_hash: str) -> Optional[TokenRevocation]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(AccessToken.is_revoked, AccessToken.expires_at)
                .where(AccessToken.token_hash == token_hash)
            )
            row = result.one_or_none()
            if row is None:
                return None
            return TokenRevocation(is_revoked=bool(row.is_revoked), expires_at=_as_utc(row.expires_at))

    async def insert_token_record(
        self,
        token_hash: str,
        api_key_id: int,
        issued_at: datetime,
        expires_at: datetime
    ) -> None:
        async with self.session_factory() as session:
            session.add(AccessToken(
                api_key_id=api_key_id,
                token_hash=token_hash,
                issued_at=_as_utc(issued_at),
                expires_at=_as_utc(expires_at),
                is_revoked=False
            ))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateRecordError(f"token record already exists: {e.orig}")

    async def revoke_token(self, token_hash: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(AccessToken)
                .where(AccessToken.token_hash == token_hash)
                .values(is_revoked=True)
            )
            await session.commit()
            return result.rowcount > 0

    async def append_usage_log(self, entry: UsageLogEntry) -> None:
        async with self.session_factory() as session:
            access_token_id = None
            if entry.token_hash:
                result = await session.execute(
                    select(AccessToken.id).where(AccessToken.token_hash == entry.token_hash)
                )
                access_token_id = result.scalar_one_or_none()
            session.add(UsageLog(
                api_key_id=entry.api_key_id,
                access_token_id=access_token_id,
                endpoint=entry.endpoint,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                success=entry.success,
                error_code=entry.error_code,
                created_at=_as_utc(entry.created_at)
            ))
            await session.commit()

    async def insert_key(
        self,
        user_id: int,
        key_hash: str,
        key_prefix: str,
        environment: str,
        version: int,
        scopes: Iterable[str],
        issued_at: datetime,
        expires_at: Optional[datetime] = None
    ) -> ApiKeyRecord:
        async with self.session_factory() as session:
            api_key = ApiKey(
                user_id=user_id,
                key_hash=key_hash,
                key_prefix=key_prefix,
                environment=environment,
                version=version,
                scopes=sorted(set(scopes)),
                is_active=True,
                issued_at=_as_utc(issued_at),
                expires_at=_as_utc(expires_at),
                usage_count=0
            )
            session.add(api_key)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateRecordError(f"api key already exists: {e.orig}")
            await session.refresh(api_key)
            return _to_key_record(api_key)

    async def deactivate_key(self, key_id: int) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(ApiKey).where(ApiKey.id == key_id).values(is_active=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def create_user(self, username: str, email: str) -> UserRecord:
        async with self.session_factory() as session:
            user = User(username=username, email=email)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise DuplicateRecordError("username or email already registered")
            await session.refresh(user)
            return UserRecord(id=user.id, username=user.username, email=user.email)

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            return UserRecord(id=user.id, username=user.username, email=user.email)
