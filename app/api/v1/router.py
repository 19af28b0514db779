from fastapi import APIRouter
from app.api.v1.endpoints import api_keys, auth, users
from app.schemas.errors import ErrorResponse, RateLimitErrorResponse

# Documented on every credential route; bodies come from CredentialServiceException.to_content()
ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    429: {"model": RateLimitErrorResponse},
    503: {"model": ErrorResponse},
}

api_router = APIRouter(responses=ERROR_RESPONSES)

api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(api_keys.router, prefix="/api-keys", tags=["api-keys"])
api_router.include_router(auth.router, tags=["auth"])
