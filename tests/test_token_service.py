"""
Tests for access token minting, verification and revocation.
"""
import pytest
from datetime import timedelta
from jose import jwt
from app.core.exceptions import (
    InvalidSignatureException,
    NotFoundException,
    TokenExpiredException,
    TokenRevokedException,
)
from app.core.records import ApiKeyRecord
from app.core.security import TokenConfig, decode_access_token, hash_token
from app.services.credential_store import GuardedCredentialStore
from app.services.token_service import TokenService
from app.core.circuit_breaker import CircuitBreaker


def make_key(clock, scopes=("read", "write"), expires_in=None, key_id=7) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=key_id,
        user_id=42,
        key_hash="0" * 64,
        key_prefix="myapp",
        environment="test",
        version=1,
        scopes=frozenset(scopes),
        is_active=True,
        issued_at=clock(),
        expires_at=clock() + timedelta(seconds=expires_in) if expires_in is not None else None,
    )


class TestTokenConfig:
    def test_effective_lifetime_is_clamped(self):
        config = TokenConfig(secret=b"s" * 32, lifetime_seconds=7200, max_lifetime_seconds=3600)

        assert config.effective_lifetime_seconds == 3600

    @pytest.mark.parametrize("kwargs", [
        {"secret": b""},
        {"secret": b"s" * 32, "lifetime_seconds": 0},
        {"secret": b"s" * 32, "max_lifetime_seconds": -1},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            TokenConfig(**kwargs)


class TestMint:
    async def test_claims(self, token_service, token_config, clock, memory_store):
        issued = await token_service.mint(make_key(clock))
        claims = decode_access_token(issued.token, token_config)

        assert claims["sub"] == "42"
        assert claims["api_key_id"] == 7
        assert claims["scopes"] == ["read", "write"]
        assert claims["exp"] - claims["iat"] == 3600
        assert len(claims["jti"]) == 32
        assert issued.token_hash == hash_token(issued.token)
        assert issued.token_hash in memory_store.tokens

    async def test_tokens_are_distinct(self, token_service, clock):
        key = make_key(clock)
        first = await token_service.mint(key)
        second = await token_service.mint(key)

        assert first.token != second.token
        assert first.token_hash != second.token_hash

    async def test_expiry_clamped_to_key_expiry(self, token_service, clock):
        issued = await token_service.mint(make_key(clock, expires_in=600))

        assert issued.expires_at == clock() + timedelta(seconds=600)

    async def test_store_failure_does_not_block_issuance(self, token_config, clock, memory_store):
        memory_store.fail_on.add("insert_token_record")
        guarded = GuardedCredentialStore(
            memory_store,
            timeout_seconds=1.0,
            retry_backoff_seconds=0.0,
            circuit_breaker=CircuitBreaker(failure_threshold=10, recovery_timeout=1),
        )
        service = TokenService(store=guarded, config=token_config, clock=clock)

        issued = await service.mint(make_key(clock))
        verified = await service.verify(issued.token)

        assert issued.token_hash not in memory_store.tokens
        assert verified.api_key_id == 7


class TestVerify:
    async def test_round_trip(self, token_service, clock):
        issued = await token_service.mint(make_key(clock))
        verified = await token_service.verify(issued.token)

        assert verified.user_id == 42
        assert verified.api_key_id == 7
        assert verified.scopes == frozenset({"read", "write"})
        assert verified.expires_at == issued.expires_at
        assert verified.token_hash == issued.token_hash
        assert verified.has_scopes(["read"])
        assert not verified.has_scopes(["admin"])

    async def test_scopes_are_a_snapshot(self, token_service, clock, memory_store):
        """Scopes in the token do not follow later changes to the key."""
        key = make_key(clock, scopes=("read",))
        issued = await token_service.mint(key)
        memory_store.keys[key.id] = make_key(clock, scopes=("read", "admin"))

        verified = await token_service.verify(issued.token)

        assert verified.scopes == frozenset({"read"})

    async def test_expired_exactly_at_exp(self, token_service, clock):
        issued = await token_service.mint(make_key(clock))

        clock.advance(3599)
        await token_service.verify(issued.token)
        clock.advance(1)
        with pytest.raises(TokenExpiredException):
            await token_service.verify(issued.token)

    async def test_expired_check_precedes_revocation(self, token_service, clock, memory_store):
        issued = await token_service.mint(make_key(clock))
        await token_service.revoke(issued.token_hash)
        clock.advance(7200)

        with pytest.raises(TokenExpiredException):
            await token_service.verify(issued.token)

    async def test_revoked(self, token_service, clock):
        issued = await token_service.mint(make_key(clock))
        await token_service.revoke(issued.token_hash)

        with pytest.raises(TokenRevokedException):
            await token_service.verify(issued.token)

    async def test_wrong_secret(self, clock, memory_store, token_service):
        issued = await token_service.mint(make_key(clock))
        other = TokenService(
            store=memory_store,
            config=TokenConfig(secret=b"another-secret-another-secret-00"),
            clock=clock,
        )

        with pytest.raises(InvalidSignatureException):
            await other.verify(issued.token)

    async def test_tampered_payload(self, token_service, clock):
        issued = await token_service.mint(make_key(clock))
        header, payload, signature = issued.token.split(".")
        tampered = ".".join([header, payload[:-2] + ("AA" if payload[-2:] != "AA" else "BB"), signature])

        with pytest.raises(InvalidSignatureException):
            await token_service.verify(tampered)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    async def test_malformed(self, token_service, token):
        with pytest.raises(InvalidSignatureException):
            await token_service.verify(token)

    async def test_missing_claims(self, token_service, token_config, clock):
        token = jwt.encode({"sub": "1", "exp": int(clock().timestamp()) + 60}, token_config.secret)

        with pytest.raises(InvalidSignatureException):
            await token_service.verify(token)

    async def test_signature_failure_touches_no_store(self, token_service, memory_store):
        with pytest.raises(InvalidSignatureException):
            await token_service.verify("garbage")

        assert memory_store.calls == []


class TestRevoke:
    async def test_unknown_token(self, token_service):
        with pytest.raises(NotFoundException):
            await token_service.revoke("f" * 64)

    async def test_revoke_is_idempotent(self, token_service, clock, memory_store):
        issued = await token_service.mint(make_key(clock))

        await token_service.revoke(issued.token_hash)
        await token_service.revoke(issued.token_hash)

        assert memory_store.tokens[issued.token_hash]["is_revoked"] is True
