from typing import List
from datetime import datetime
from pydantic import BaseModel


class TokenRequest(BaseModel):
    """Request schema carrying an access token."""
    token: str


class TokenValidateResponse(BaseModel):
    """Identity and scopes bound to a valid token."""
    success: bool = True
    valid: bool = True
    user_id: int
    api_key_id: int
    scopes: List[str]
    expires_at: datetime


class TokenRevokeResponse(BaseModel):
    success: bool = True
    revoked: bool = True


class ProtectedResponse(BaseModel):
    success: bool = True
    message: str = "Access granted to protected endpoint"
    user_id: int
    api_key_id: int
    scopes: List[str]
