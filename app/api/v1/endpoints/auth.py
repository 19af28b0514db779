from fastapi import APIRouter, Depends
from app.api.deps import get_auth_gateway, get_request_context
from app.config import settings
from app.schemas.api_keys import ApiKeyRequest, ApiKeyValidateResponse
from app.schemas.tokens import (
    ProtectedResponse,
    TokenRequest,
    TokenRevokeResponse,
    TokenValidateResponse,
)
from app.services.auth_gateway import AuthGateway, RequestContext

router = APIRouter()


@router.post("/validate", response_model=ApiKeyValidateResponse)
async def validate_api_key(
    request: ApiKeyRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    """Exchange an API key for a short-lived access token."""
    result = await gateway.validate_key(ctx, request.api_key)
    return ApiKeyValidateResponse(
        access_token=result.token.token,
        expires_at=result.token.expires_at,
        api_key_id=result.record.id,
        scopes=sorted(result.token.scopes)
    )


@router.post("/tokens/validate", response_model=TokenValidateResponse)
async def validate_token(
    request: TokenRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    """Return the identity and scopes bound to an access token."""
    verified = await gateway.validate_token(ctx, request.token)
    return TokenValidateResponse(
        user_id=verified.user_id,
        api_key_id=verified.api_key_id,
        scopes=sorted(verified.scopes),
        expires_at=verified.expires_at
    )


@router.post("/tokens/revoke", response_model=TokenRevokeResponse)
async def revoke_token(
    request: TokenRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    await gateway.revoke_token(ctx, request.token)
    return TokenRevokeResponse()


@router.post("/protected", response_model=ProtectedResponse)
async def protected_endpoint(
    request: TokenRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    """Example resource that requires a token with the configured scopes."""
    verified = await gateway.authorize(ctx, request.token, settings.PROTECTED_REQUIRED_SCOPES)
    return ProtectedResponse(
        user_id=verified.user_id,
        api_key_id=verified.api_key_id,
        scopes=sorted(verified.scopes)
    )
