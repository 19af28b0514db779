import os
import tempfile

# Settings are read at import time; configure the environment first
_TEST_DIR = tempfile.mkdtemp(prefix="api_credentials_test_")
os.environ["SECRET_KEY"] = "test-secret-key-for-signing-access-tokens-0123456789"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_DIR"] = os.path.join(_TEST_DIR, "logs")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'api_credentials.db')}"

import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, Generator, List, Optional
from app.config import RateLimitRule, default_rate_limit_categories
from app.core.api_key import KeyCodec
from app.core.circuit_breaker import CircuitBreaker
from app.core.rate_limiter import RateLimiter
from app.core.records import ApiKeyRecord, TokenRevocation, UsageLogEntry, UserRecord
from app.core.security import TokenConfig
from app.database import Base, build_engine, build_session_factory
from app.services.auth_gateway import AuthGateway, RequestContext
from app.services.credential_store import (
    CredentialStore,
    DuplicateRecordError,
    GuardedCredentialStore,
)
from app.services.sqlalchemy_store import SQLAlchemyCredentialStore
from app.services.token_service import TokenService
import app.models  # noqa: F401

TEST_DATABASE_URL = os.environ["DATABASE_URL"]

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = build_session_factory(test_engine)

TEST_SECRET = b"unit-test-signing-secret-0123456789abcdef"


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Manually advanced float clock for the rate limiter."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemoryCredentialStore(CredentialStore):
    """In-memory store that records every call, for service-level tests."""

    def __init__(self):
        self.calls: List[str] = []
        self.users: Dict[int, UserRecord] = {}
        self.keys: Dict[int, ApiKeyRecord] = {}
        self.tokens: Dict[str, dict] = {}
        self.usage_logs: List[UsageLogEntry] = []
        self.fail_on: set = set()

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise ConnectionError(f"{name} unavailable")

    async def find_key_by_hash(self, key_hash):
        self._record("find_key_by_hash")
        return next((k for k in self.keys.values() if k.key_hash == key_hash), None)

    async def increment_usage(self, key_id, timestamp):
        self._record("increment_usage")
        key = self.keys[key_id]
        self.keys[key_id] = replace(key, usage_count=key.usage_count + 1, last_used_at=timestamp)

    async def find_token_revocation(self, token_hash):
        self._record("find_token_revocation")
        token = self.tokens.get(token_hash)
        if token is None:
            return None
        return TokenRevocation(is_revoked=token["is_revoked"], expires_at=token["expires_at"])

    async def insert_token_record(self, token_hash, api_key_id, issued_at, expires_at):
        self._record("insert_token_record")
        if token_hash in self.tokens:
            raise DuplicateRecordError(token_hash)
        self.tokens[token_hash] = {
            "api_key_id": api_key_id,
            "issued_at": issued_at,
            "expires_at": expires_at,
            "is_revoked": False,
        }

    async def revoke_token(self, token_hash):
        self._record("revoke_token")
        if token_hash not in self.tokens:
            return False
        self.tokens[token_hash]["is_revoked"] = True
        return True

    async def append_usage_log(self, entry):
        self._record("append_usage_log")
        self.usage_logs.append(entry)

    async def insert_key(self, user_id, key_hash, key_prefix, environment, version,
                         scopes, issued_at, expires_at=None):
        self._record("insert_key")
        key_id = len(self.keys) + 1
        record = ApiKeyRecord(
            id=key_id,
            user_id=user_id,
            key_hash=key_hash,
            key_prefix=key_prefix,
            environment=environment,
            version=version,
            scopes=frozenset(scopes),
            is_active=True,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        self.keys[key_id] = record
        return record

    async def deactivate_key(self, key_id):
        self._record("deactivate_key")
        if key_id not in self.keys:
            return False
        self.keys[key_id] = replace(self.keys[key_id], is_active=False)
        return True

    async def create_user(self, username, email):
        self._record("create_user")
        if any(u.username == username or u.email == email for u in self.users.values()):
            raise DuplicateRecordError(username)
        user = UserRecord(id=len(self.users) + 1, username=username, email=email)
        self.users[user.id] = user
        return user

    async def get_user(self, user_id):
        self._record("get_user")
        return self.users.get(user_id)


def generous_rate_limiter(**kwargs) -> RateLimiter:
    rule = RateLimitRule(requests_per_minute=10000, burst_limit=10000)
    categories = {name: rule for name in default_rate_limit_categories()}
    return RateLimiter(default_rule=rule, categories=categories, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(secret=TEST_SECRET, lifetime_seconds=3600, max_lifetime_seconds=3600)


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def token_service(memory_store, token_config, clock) -> TokenService:
    return TokenService(store=memory_store, config=token_config, clock=clock)


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(client_id="ip:10.0.0.1", ip_address="10.0.0.1", user_agent="pytest")


@pytest.fixture
def gateway(memory_store, token_service, clock) -> AuthGateway:
    return AuthGateway(
        store=memory_store,
        token_service=token_service,
        rate_limiter=generous_rate_limiter(),
        key_codec=KeyCodec(clock=lambda: clock().timestamp()),
        key_prefix="myapp",
        key_environment="test",
        clock=clock,
    )


@pytest.fixture(scope="function")
async def sql_store() -> AsyncGenerator[SQLAlchemyCredentialStore, None]:
    """SQLAlchemy store on a freshly created test database."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield SQLAlchemyCredentialStore(TestSessionLocal)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
def client() -> Generator:
    """Create a sync test client (runs startup and shutdown hooks)."""
    from fastapi.testclient import TestClient
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="function")
async def async_client(sql_store: SQLAlchemyCredentialStore) -> AsyncGenerator:
    """Async test client backed by the test database and a generous rate limiter."""
    from httpx import AsyncClient, ASGITransport
    from app.api.deps import get_credential_store, get_rate_limiter
    from app.main import app

    guarded = GuardedCredentialStore(
        sql_store,
        timeout_seconds=5.0,
        retry_backoff_seconds=0.0,
        circuit_breaker=CircuitBreaker(failure_threshold=100, recovery_timeout=1),
    )
    rate_limiter = generous_rate_limiter()

    app.dependency_overrides[get_credential_store] = lambda: guarded
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
