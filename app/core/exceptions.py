from typing import Dict, Optional
from fastapi import HTTPException, status


class CredentialServiceException(HTTPException):
    """Base class for every error the credential service reports to callers."""

    error_code = "credential_error"
    default_status = status.HTTP_400_BAD_REQUEST
    default_detail = "Credential error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(
            status_code=self.default_status,
            detail=detail or self.default_detail,
            headers=headers
        )

    def to_content(self) -> dict:
        return {"detail": self.detail, "error": self.error_code}


class InvalidFormatException(CredentialServiceException):
    """Exception raised when key text does not have the expected layout."""

    error_code = "invalid_format"
    default_detail = "Invalid API key format"


class ChecksumMismatchException(CredentialServiceException):
    """Exception raised when the key checksum does not match its segments."""

    error_code = "checksum_mismatch"
    default_detail = "Invalid API key checksum"


class InvalidSignatureException(CredentialServiceException):
    """Exception raised when an access token fails signature verification."""

    error_code = "invalid_signature"
    default_detail = "Invalid token signature"


class KeyNotFoundException(CredentialServiceException):
    """Exception raised when no key record matches the presented key."""

    error_code = "key_not_found"
    default_status = status.HTTP_401_UNAUTHORIZED
    default_detail = "API key not found"


class KeyInactiveException(CredentialServiceException):
    """Exception raised when the key has been deactivated."""

    error_code = "key_inactive"
    default_status = status.HTTP_401_UNAUTHORIZED
    default_detail = "API key is inactive"


class KeyExpiredException(CredentialServiceException):
    """Exception raised when the key is past its expiration."""

    error_code = "key_expired"
    default_status = status.HTTP_401_UNAUTHORIZED
    default_detail = "API key expired"


class TokenExpiredException(CredentialServiceException):
    """Exception raised when an access token is past its expiration."""

    error_code = "token_expired"
    default_status = status.HTTP_401_UNAUTHORIZED
    default_detail = "Token expired"


class TokenRevokedException(CredentialServiceException):
    """Exception raised when an access token has been revoked."""

    error_code = "token_revoked"
    default_status = status.HTTP_401_UNAUTHORIZED
    default_detail = "Token has been revoked"


class NotFoundException(CredentialServiceException):
    """Exception raised when revoking a token that was never registered."""

    error_code = "not_found"
    default_status = status.HTTP_404_NOT_FOUND
    default_detail = "Token not found"


class InsufficientScopeException(CredentialServiceException):
    """Exception raised when a token lacks a required scope."""

    error_code = "insufficient_scope"
    default_status = status.HTTP_403_FORBIDDEN
    default_detail = "Insufficient token scopes"


class UserNotFoundException(CredentialServiceException):
    """Exception raised when a key is requested for an unknown user."""

    error_code = "user_not_found"
    default_status = status.HTTP_404_NOT_FOUND
    default_detail = "User not found"


class UserAlreadyExistsException(CredentialServiceException):
    """Exception raised when username or email is already registered."""

    error_code = "user_exists"
    default_status = status.HTTP_409_CONFLICT
    default_detail = "User already exists"


class StoreUnavailableException(CredentialServiceException):
    """Exception raised when the credential store times out or cannot be reached."""

    error_code = "store_unavailable"
    default_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Credential store unavailable. Please try again later."


class RateLimitExceededException(CredentialServiceException):
    """Exception raised when a client exceeds its quota for a category."""

    error_code = "rate_limit_exceeded"
    default_status = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Rate limit exceeded"

    def __init__(self, decision, detail: Optional[str] = None):
        self.decision = decision
        super().__init__(
            detail=detail or f"Rate limit exceeded for {decision.category} endpoint",
            headers=decision.headers()
        )

    @property
    def remaining(self) -> int:
        return self.decision.remaining

    @property
    def reset_in(self) -> float:
        return self.decision.reset_in

    def to_content(self) -> dict:
        content = super().to_content()
        content.update({
            "category": self.decision.category,
            "limit": self.decision.limit,
            "remaining": self.decision.remaining,
            "reset_in": self.decision.reset_in,
        })
        return content
