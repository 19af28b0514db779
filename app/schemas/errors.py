from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body of every credential-service error response."""
    detail: str
    error: str


class RateLimitErrorResponse(ErrorResponse):
    category: str
    limit: int
    remaining: int = 0
    reset_in: float
