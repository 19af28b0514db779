from fastapi import APIRouter, Depends, status
from app.api.deps import get_auth_gateway, get_request_context
from app.schemas.api_keys import (
    ApiKeyCreateRequest,
    ApiKeyCreateResponse,
    ApiKeyDeactivateResponse,
    ApiKeyRequest,
)
from app.services.auth_gateway import AuthGateway, IssuedKey, RequestContext

router = APIRouter()


def _issued_key_response(issued: IssuedKey, message: str) -> ApiKeyCreateResponse:
    return ApiKeyCreateResponse(
        api_key=issued.key_text,
        key_id=issued.record.id,
        version=issued.record.version,
        scopes=sorted(issued.record.scopes),
        access_token=issued.token.token,
        expires_at=issued.token.expires_at,
        message=message
    )


@router.post("", response_model=ApiKeyCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    request: ApiKeyCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    """
    Issue an API key and its first access token.

    The key text is returned once and cannot be recovered afterwards.
    """
    issued = await gateway.issue_key(ctx, request.user_id, request.scopes, request.expires_at)
    return _issued_key_response(issued, "API key created successfully")


@router.post("/rotate", response_model=ApiKeyCreateResponse)
async def rotate_api_key(
    request: ApiKeyRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    """Replace a key with its next version; the presented key is deactivated."""
    issued = await gateway.rotate_key(ctx, request.api_key)
    if not issued.previous_key_deactivated:
        response = _issued_key_response(
            issued, "API key rotated; the previous key could not be deactivated and is still active"
        )
    else:
        response = _issued_key_response(issued, "API key rotated successfully")
    response.previous_key_deactivated = issued.previous_key_deactivated
    return response


@router.post("/deactivate", response_model=ApiKeyDeactivateResponse)
async def deactivate_api_key(
    request: ApiKeyRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    record = await gateway.deactivate_key(ctx, request.api_key)
    return ApiKeyDeactivateResponse(key_id=record.id)
