"""
Credential store contract and the guard that bounds every store call.
"""
import abc
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, TypeVar
from sqlalchemy.exc import SQLAlchemyError
from app.config import settings
from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from app.core.exceptions import StoreUnavailableException
from app.core.records import ApiKeyRecord, TokenRevocation, UsageLogEntry, UserRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean "the store could not be reached", as opposed to a rejected write
STORE_FAILURES = (asyncio.TimeoutError, ConnectionError, OSError, SQLAlchemyError)


class DuplicateRecordError(Exception):
    """Raised by a store when a unique constraint rejects an insert."""


class CredentialStore(abc.ABC):
    """Durable storage for users, keys, token records and usage logs."""

    @abc.abstractmethod
    async def find_key_by_hash(self, key_hash: str) -> Optional[ApiKeyRecord]:
        ...

    @abc.abstractmethod
    async def increment_usage(self, key_id: int, timestamp: datetime) -> None:
        ...

    @abc.abstractmethod
    async def find_token_revocation(self, token_hash: str) -> Optional[TokenRevocation]:
        ...

    @abc.abstractmethod
    async def insert_token_record(
        self,
        token_hash: str,
        api_key_id: int,
        issued_at: datetime,
        expires_at: datetime
    ) -> None:
        ...

    @abc.abstractmethod
    async def revoke_token(self, token_hash: str) -> bool:
        """Mark a token revoked. Returns True if a record existed."""

    @abc.abstractmethod
    async def append_usage_log(self, entry: UsageLogEntry) -> None:
        ...

    @abc.abstractmethod
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
        ...

    @abc.abstractmethod
    async def deactivate_key(self, key_id: int) -> bool:
        ...

    @abc.abstractmethod
    async def create_user(self, username: str, email: str) -> UserRecord:
        """Raises DuplicateRecordError when username or email is taken."""

    @abc.abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        ...


class GuardedCredentialStore(CredentialStore):
    """
    Wraps a store with a per-call timeout, a circuit breaker, and a single
    retry for read-only lookups.

    Any timeout, connection failure or open circuit is raised as
    StoreUnavailableException. Writes are never retried.
    """

    def __init__(
        self,
        store: CredentialStore,
        timeout_seconds: Optional[float] = None,
        retry_backoff_seconds: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self.store = store
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.STORE_TIMEOUT_SECONDS
        self.retry_backoff_seconds = (
            retry_backoff_seconds if retry_backoff_seconds is not None
            else settings.STORE_RETRY_BACKOFF_SECONDS
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="credential_store",
            counted_exceptions=STORE_FAILURES
        )

    async def _once(self, operation: str, func: Callable[..., Awaitable[T]], *args) -> T:
        try:
            return await self.circuit_breaker.call(
                lambda: asyncio.wait_for(func(*args), timeout=self.timeout_seconds)
            )
        except CircuitBreakerOpenException as e:
            logger.warning(f"Store call {operation} short-circuited: {e.message}")
            raise StoreUnavailableException()
        except STORE_FAILURES as e:
            logger.warning(f"Store call {operation} failed: {type(e).__name__}: {e}")
            raise StoreUnavailableException()

    async def _read(self, operation: str, func: Callable[..., Awaitable[T]], *args) -> T:
        try:
            return await self._once(operation, func, *args)
        except StoreUnavailableException:
            await asyncio.sleep(self.retry_backoff_seconds)
            logger.info(f"Retrying store read {operation}")
            return await self._once(operation, func, *args)

    async def find_key_by_hash(self, key_hash: str) -> Optional[ApiKeyRecord]:
        return await self._read("find_key_by_hash", self.store.find_key_by_hash, key_hash)

    async def increment_usage(self, key_id: int, timestamp: datetime) -> None:
        await self._once("increment_usage", self.store.increment_usage, key_id, timestamp)

    async def find_token_revocation(self, token_hash: str) -> Optional[TokenRevocation]:
        return await self._read("find_token_revocation", self.store.find_token_revocation, token_hash)

    async def insert_token_record(
        self,
        token_hash: str,
        api_key_id: int,
        issued_at: datetime,
        expires_at: datetime
    ) -> None:
        await self._once(
            "insert_token_record", self.store.insert_token_record,
            token_hash, api_key_id, issued_at, expires_at
        )

    async def revoke_token(self, token_hash: str) -> bool:
        return await self._once("revoke_token", self.store.revoke_token, token_hash)

    async def append_usage_log(self, entry: UsageLogEntry) -> None:
        await self._once("append_usage_log", self.store.append_usage_log, entry)

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
        return await self._once(
            "insert_key", self.store.insert_key,
            user_id, key_hash, key_prefix, environment, version, scopes, issued_at, expires_at
        )

    async def deactivate_key(self, key_id: int) -> bool:
        return await self._once("deactivate_key", self.store.deactivate_key, key_id)

    async def create_user(self, username: str, email: str) -> UserRecord:
        return await self._once("create_user", self.store.create_user, username, email)

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        return await self._read("get_user", self.store.get_user, user_id)
