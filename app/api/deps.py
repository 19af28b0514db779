from typing import Optional
from fastapi import Depends, Request
from app.config import settings
from app.core.rate_limiter import RateLimiter
from app.core.security import TokenConfig
from app.database import AsyncSessionLocal
from app.middleware.rate_limit import get_client_identifier, get_client_ip, limiter
from app.services.auth_gateway import AuthGateway, RequestContext
from app.services.credential_store import CredentialStore, GuardedCredentialStore
from app.services.sqlalchemy_store import SQLAlchemyCredentialStore
from app.services.token_service import TokenService

# Process-wide state: the signing config is immutable, the store guard keeps
# circuit-breaker state across requests.
token_config = TokenConfig.from_settings(settings)
credential_store = GuardedCredentialStore(SQLAlchemyCredentialStore(AsyncSessionLocal))


def get_credential_store() -> CredentialStore:
    return credential_store


def get_rate_limiter() -> RateLimiter:
    return limiter


def get_token_config() -> TokenConfig:
    return token_config


def get_token_service(
    store: CredentialStore = Depends(get_credential_store),
    config: TokenConfig = Depends(get_token_config)
) -> TokenService:
    return TokenService(store=store, config=config)


def get_auth_gateway(
    store: CredentialStore = Depends(get_credential_store),
    token_service: TokenService = Depends(get_token_service),
    rate_limiter: RateLimiter = Depends(get_rate_limiter)
) -> AuthGateway:
    """
    Get the AuthGateway for a request.

    Usage:
        @router.post("/validate")
        async def endpoint(gateway: AuthGateway = Depends(get_auth_gateway)):
            ...
    """
    return AuthGateway(
        store=store,
        token_service=token_service,
        rate_limiter=rate_limiter,
        key_prefix=settings.API_KEY_PREFIX,
        key_environment=settings.API_KEY_ENVIRONMENT
    )


def get_request_context(
    request: Request,
    config: TokenConfig = Depends(get_token_config)
) -> RequestContext:
    """
    Caller information for the gateway.

    The context is stored on request.state so RateLimitHeadersMiddleware
    can emit the decision the gateway records on it.
    """
    request_id: Optional[str] = getattr(request.state, "request_id", None)
    context = RequestContext(
        client_id=get_client_identifier(request, config),
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=request_id
    )
    request.state.gateway_context = context
    return context
