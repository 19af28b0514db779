from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitRule(BaseModel):
    """Admission limits for one rate-limit category."""

    requests_per_minute: int = Field(default=100, ge=1)
    burst_limit: int = Field(default=20, ge=1)
    window_size_seconds: int = Field(default=60, ge=1)


def default_rate_limit_categories() -> Dict[str, RateLimitRule]:
    return {
        "authentication": RateLimitRule(requests_per_minute=5, burst_limit=3),
        "data-read": RateLimitRule(requests_per_minute=200, burst_limit=50),
        "data-write": RateLimitRule(requests_per_minute=50, burst_limit=10),
        "key-generation": RateLimitRule(requests_per_minute=3, burst_limit=1),
        "batch": RateLimitRule(requests_per_minute=2, burst_limit=1),
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Project Info
    PROJECT_NAME: str = "API Credential Service"
    VERSION: str = "1.0.0"
    API_PREFIX: str = Field(default="", description="Prefix for all API routes")
    ENVIRONMENT: str = Field(default="development", description="Environment: development, staging, production")

    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./data/api_credentials.db",
        description="Database URL (SQLite or PostgreSQL)"
    )
    DB_POOL_SIZE: int = Field(default=5, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Database max overflow connections")
    DB_POOL_TIMEOUT: int = Field(default=30, description="Database pool timeout in seconds")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Database pool recycle time in seconds")
    DB_AUTO_CREATE: bool = Field(default=True, description="Create tables on startup (development)")

    # Token signing
    SECRET_KEY: str = Field(..., description="Secret used to sign access tokens")
    ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, description="Access token lifetime in minutes")
    ACCESS_TOKEN_MAX_LIFETIME_MINUTES: int = Field(
        default=60,
        description="Upper bound for any access token lifetime in minutes"
    )

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError('SECRET_KEY must be at least 32 characters')
        return v

    # API keys
    API_KEY_PREFIX: str = Field(default="myapp", description="Human-readable prefix of issued keys")
    API_KEY_ENVIRONMENT: str = Field(default="dev", description="Environment tag of issued keys (prod, dev, test)")
    PROTECTED_REQUIRED_SCOPES: List[str] = Field(
        default=["read"],
        description="Scopes a token must carry to access /protected"
    )

    # Security - CORS
    BACKEND_CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins"
    )

    # Credential store
    STORE_TIMEOUT_SECONDS: float = Field(default=5.0, description="Timeout for a single store call")
    STORE_RETRY_BACKOFF_SECONDS: float = Field(default=0.1, description="Backoff before retrying a read")

    # Circuit Breaker
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(default=5, description="Failures before circuit opens")
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: int = Field(default=30, description="Seconds before attempting reset")
    CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS: int = Field(default=3, description="Max calls in half-open state")

    # Server Configuration
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8000, description="Server port")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    LOG_DIR: str = Field(default="./logs", description="Directory for log files")
    LOG_RETENTION_DAYS: int = Field(default=30, description="Number of days to keep log files")
    LOG_ENABLE_REQUEST_LOGGING: bool = Field(default=True, description="Enable HTTP request/response logging")

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_DEFAULT: RateLimitRule = Field(
        default_factory=RateLimitRule,
        description="Rule applied to categories without an explicit entry"
    )
    RATE_LIMIT_CATEGORIES: Dict[str, RateLimitRule] = Field(
        default_factory=default_rate_limit_categories,
        description="Per-category rules (JSON object in the environment)"
    )
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = Field(default=60.0, description="Seconds between idle-entry sweeps")
    RATE_LIMIT_SWEEP_GRACE_SECONDS: Optional[float] = Field(
        default=None,
        description="Idle time before an entry is swept (defaults to 2x the longest window)"
    )

    def get_log_level(self) -> str:
        """Get log level based on environment."""
        if self.ENVIRONMENT.lower() in ["development", "dev", "test"]:
            return "DEBUG"
        return self.LOG_LEVEL.upper()

    def get_signing_secret(self) -> bytes:
        return self.SECRET_KEY.encode("utf-8")


settings = Settings()
