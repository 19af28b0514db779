from typing import List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator


class ApiKeyCreateRequest(BaseModel):
    """Request schema for issuing an API key."""
    user_id: int
    scopes: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: List[str]) -> List[str]:
        if any(not scope or not scope.strip() for scope in v):
            raise ValueError("scopes must be non-empty strings")
        return sorted(set(v))

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps are taken as UTC; offsets are converted
        if v is None:
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ApiKeyCreateResponse(BaseModel):
    """Response schema for a newly issued key. The key text is shown only once."""
    success: bool = True
    api_key: str
    key_id: int
    version: int
    scopes: List[str]
    access_token: str
    expires_at: datetime
    previous_key_deactivated: Optional[bool] = None
    message: str = "API key created successfully"


class ApiKeyRequest(BaseModel):
    """Request schema carrying API key text."""
    api_key: str


class ApiKeyValidateResponse(BaseModel):
    """Response schema for a successful key validation."""
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    api_key_id: int
    scopes: List[str]


class ApiKeyDeactivateResponse(BaseModel):
    success: bool = True
    key_id: int
    is_active: bool = False
