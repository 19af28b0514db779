"""
Rate limiting wiring: the process-wide limiter, client identification,
and rate-limit response headers.
"""
import logging
from slowapi.util import get_remote_address
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from app.config import settings
from app.core.rate_limiter import RateLimiter, RateLimitSweeper
from app.core.security import TokenConfig, decode_access_token

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get client IP address from request.
    Handles X-Forwarded-For header for proxied requests.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain (original client)
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def get_client_identifier(request: Request, token_config: TokenConfig) -> str:
    """
    Rate-limit identity of the caller.

    A bearer token whose signature verifies identifies the caller by its API
    key. Unverifiable credentials are ignored and the network origin is used.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        claims = decode_access_token(auth_header[7:].strip(), token_config)
        if claims is not None:
            try:
                return f"key:{int(claims['api_key_id'])}"
            except (KeyError, TypeError, ValueError):
                pass
    return f"ip:{get_client_ip(request)}"


def build_rate_limiter() -> RateLimiter:
    return RateLimiter(
        default_rule=settings.RATE_LIMIT_DEFAULT,
        categories=settings.RATE_LIMIT_CATEGORIES,
        grace_period_seconds=settings.RATE_LIMIT_SWEEP_GRACE_SECONDS,
        enabled=settings.RATE_LIMIT_ENABLED
    )


# Process-wide limiter; state is per process
limiter = build_rate_limiter()
sweeper = RateLimitSweeper(limiter, settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS)


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Copies the request's rate-limit decision, if one was made, into response headers."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        context = getattr(request.state, "gateway_context", None)
        decision = getattr(context, "rate_limit", None)
        if decision is not None:
            for name, value in decision.headers().items():
                response.headers[name] = value
        return response


def setup_rate_limiting(app: FastAPI) -> None:
    """
    Configure rate limiting for the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.state.limiter = limiter
    app.add_middleware(RateLimitHeadersMiddleware)

    if not settings.RATE_LIMIT_ENABLED:
        logger.info("Rate limiting is disabled")
        return

    @app.on_event("startup")
    async def start_rate_limit_sweeper():
        sweeper.start()

    @app.on_event("shutdown")
    async def stop_rate_limit_sweeper():
        await sweeper.stop()

    logger.info(
        f"Rate limiting enabled: default={settings.RATE_LIMIT_DEFAULT.requests_per_minute}/"
        f"{settings.RATE_LIMIT_DEFAULT.window_size_seconds}s, "
        f"categories={sorted(settings.RATE_LIMIT_CATEGORIES)}"
    )
