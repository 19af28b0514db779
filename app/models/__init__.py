"""Database models."""
from app.models.user import User
from app.models.api_key import ApiKey
from app.models.access_token import AccessToken
from app.models.usage_log import UsageLog

__all__ = [
    "User",
    "ApiKey",
    "AccessToken",
    "UsageLog",
]
