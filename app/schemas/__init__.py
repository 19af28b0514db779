"""Pydantic schemas for request/response contracts."""
from app.schemas.users import (
    UserCreateRequest,
    UserCreateResponse,
)
from app.schemas.api_keys import (
    ApiKeyCreateRequest,
    ApiKeyCreateResponse,
    ApiKeyRequest,
    ApiKeyValidateResponse,
    ApiKeyDeactivateResponse,
)
from app.schemas.tokens import (
    TokenRequest,
    TokenValidateResponse,
    TokenRevokeResponse,
    ProtectedResponse,
)
from app.schemas.errors import (
    ErrorResponse,
    RateLimitErrorResponse,
)

__all__ = [
    "UserCreateRequest",
    "UserCreateResponse",
    "ApiKeyCreateRequest",
    "ApiKeyCreateResponse",
    "ApiKeyRequest",
    "ApiKeyValidateResponse",
    "ApiKeyDeactivateResponse",
    "TokenRequest",
    "TokenValidateResponse",
    "TokenRevokeResponse",
    "ProtectedResponse",
    "ErrorResponse",
    "RateLimitErrorResponse",
]
