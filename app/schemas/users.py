from pydantic import BaseModel, EmailStr, Field


class UserCreateRequest(BaseModel):
    """Request schema for registering a user."""
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr


class UserCreateResponse(BaseModel):
    """Response schema for user registration."""
    success: bool = True
    user_id: int
    message: str = "User created successfully"
