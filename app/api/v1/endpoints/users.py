from fastapi import APIRouter, Depends, status
from app.api.deps import get_auth_gateway, get_request_context
from app.schemas.users import UserCreateRequest, UserCreateResponse
from app.services.auth_gateway import AuthGateway, RequestContext

router = APIRouter()


@router.post("", response_model=UserCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: UserCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    gateway: AuthGateway = Depends(get_auth_gateway)
):
    """Register a user that API keys can be issued to."""
    user = await gateway.register_user(ctx, request.username, request.email)
    return UserCreateResponse(user_id=user.id)
