"""
Tests for JWT helpers, log masking, client identity and request schemas.
"""
import logging
import pytest
from datetime import datetime, timezone
from starlette.requests import Request
from app.config import Settings
from app.core.logging_config import RequestIDFormatter
from app.core.logging_utils import (
    MASK,
    mask_headers,
    mask_sensitive_data,
    mask_text,
    sanitize_log_message,
)
from app.core.security import TokenConfig, create_access_token, decode_access_token, hash_token
from app.core.api_key import KeyCodec
from app.middleware.rate_limit import get_client_identifier
from app.schemas.api_keys import ApiKeyCreateRequest

CONFIG = TokenConfig(secret=b"security-tests-signing-secret-0123456789")


class TestJWTTokens:
    """Tests for JWT token helpers."""

    def test_create_and_decode(self):
        token = create_access_token({"sub": "1", "exp": 1}, CONFIG)

        assert isinstance(token, str)
        assert token.count(".") == 2
        # Expiry is left to the caller's clock
        assert decode_access_token(token, CONFIG) == {"sub": "1", "exp": 1}

    def test_decode_invalid(self):
        assert decode_access_token("invalid.token.here", CONFIG) is None

    def test_decode_empty(self):
        assert decode_access_token("", CONFIG) is None

    def test_decode_wrong_algorithm_config(self):
        token = create_access_token({"sub": "1"}, CONFIG)
        other = TokenConfig(secret=CONFIG.secret, algorithm="HS512")

        assert decode_access_token(token, other) is None

    def test_hash_token(self):
        assert len(hash_token("abc")) == 64
        assert hash_token("abc") == hash_token("abc")
        assert hash_token("abc") != hash_token("abd")

    def test_from_settings(self):
        settings = Settings(
            SECRET_KEY="s" * 40,
            ACCESS_TOKEN_EXPIRE_MINUTES=120,
            ACCESS_TOKEN_MAX_LIFETIME_MINUTES=60,
        )
        config = TokenConfig.from_settings(settings)

        assert config.secret == b"s" * 40
        assert config.effective_lifetime_seconds == 3600


class TestSettings:
    def test_short_secret_rejected(self):
        with pytest.raises(ValueError):
            Settings(SECRET_KEY="too-short")

    def test_default_categories(self):
        settings = Settings(SECRET_KEY="s" * 40)

        assert settings.RATE_LIMIT_CATEGORIES["authentication"].requests_per_minute == 5
        assert settings.RATE_LIMIT_CATEGORIES["authentication"].burst_limit == 3
        assert settings.RATE_LIMIT_CATEGORIES["key-generation"].burst_limit == 1
        assert settings.RATE_LIMIT_DEFAULT.requests_per_minute == 100
        assert settings.RATE_LIMIT_DEFAULT.burst_limit == 20


class TestLogMasking:
    def test_api_key_text_masked(self):
        key_text = KeyCodec().generate("myapp", "prod").key_text
        masked = mask_text(f"validating {key_text} now")

        assert key_text not in masked
        assert MASK in masked

    def test_jwt_masked(self):
        token = create_access_token({"sub": "1"}, CONFIG)

        assert token not in mask_text(f"Bearer {token}")

    def test_sensitive_fields(self):
        masked = mask_sensitive_data({
            "api_key": "abc",
            "token": "def",
            "nested": {"Authorization": "Bearer x"},
            "key_id": 5,
            "token_hash": "deadbeef",
            "category": "authentication",
        })

        assert masked["api_key"] == MASK
        assert masked["token"] == MASK
        assert masked["nested"]["Authorization"] == MASK
        assert masked["key_id"] == 5
        assert masked["token_hash"] == "deadbeef"
        assert masked["category"] == "authentication"

    def test_email_partially_masked(self):
        masked = mask_sensitive_data({"email": "alice.smith@example.com"})

        assert masked["email"] == "ali***@example.com"

    def test_headers(self):
        masked = mask_headers({"Authorization": "Bearer x", "X-API-Key": "k", "Accept": "*/*"})

        assert masked == {"Authorization": MASK, "X-API-Key": MASK, "Accept": "*/*"}

    def test_sanitize_log_message(self):
        message = sanitize_log_message("Token checked", KeyID=3, Token="secret", RequestID="req-1")

        assert message == f"Token checked | KeyID: 3 | Token: {MASK} | RequestID: req-1"


class TestRequestIDFormatter:
    def _record(self, msg: str) -> logging.LogRecord:
        return logging.LogRecord("test", logging.INFO, __file__, 1, msg, (), None)

    def test_request_id_lifted_into_prefix(self):
        output = RequestIDFormatter().format(self._record("Done | KeyID: 1 | RequestID: abc-123"))

        assert "[abc-123]" in output
        assert output.endswith("Done | KeyID: 1")

    def test_system_records(self):
        output = RequestIDFormatter().format(self._record("Startup"))

        assert "[SYSTEM]" in output


def _request(headers: dict, host: str = "10.0.0.9") -> Request:
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/validate",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": (host, 51000),
    })


class TestClientIdentifier:
    def test_verified_bearer_uses_key_id(self):
        token = create_access_token({"sub": "1", "api_key_id": 7}, CONFIG)

        assert get_client_identifier(_request({"Authorization": f"Bearer {token}"}), CONFIG) == "key:7"

    def test_unverified_bearer_uses_address(self):
        forged = create_access_token(
            {"sub": "1", "api_key_id": 7}, TokenConfig(secret=b"another-signing-secret-0123456789abc")
        )

        assert get_client_identifier(_request({"Authorization": f"Bearer {forged}"}), CONFIG) == "ip:10.0.0.9"
        assert get_client_identifier(_request({"Authorization": "Bearer junk"}), CONFIG) == "ip:10.0.0.9"

    def test_api_key_header_is_ignored(self):
        request = _request({"X-API-Key": "myapp_dev_v1_whatever"})

        assert get_client_identifier(request, CONFIG) == "ip:10.0.0.9"

    def test_forwarded_for(self):
        request = _request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})

        assert get_client_identifier(request, CONFIG) == "ip:203.0.113.5"


class TestRequestSchemas:
    def test_offset_expiry_converted_to_utc(self):
        request = ApiKeyCreateRequest(user_id=1, expires_at="2026-01-02T00:00:00+09:00")

        assert request.expires_at == datetime(2026, 1, 1, 15, 0, tzinfo=timezone.utc)
        assert request.expires_at.utcoffset().total_seconds() == 0

    def test_naive_expiry_taken_as_utc(self):
        request = ApiKeyCreateRequest(user_id=1, expires_at="2026-01-02T00:00:00")

        assert request.expires_at == datetime(2026, 1, 2, 0, 0, tzinfo=timezone.utc)
