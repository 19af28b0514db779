import logging
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.v1.router import api_router
from app.config import settings
from app.core.exceptions import (
    CredentialServiceException,
    RateLimitExceededException,
    StoreUnavailableException,
)
from app.core.logging_config import setup_logging, cleanup_old_logs
from app.core.logging_utils import sanitize_log_message
from app.database import close_db, init_db
from app.middleware.logging_middleware import LoggingMiddleware
from app.middleware.rate_limit import setup_rate_limiting

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    docs_url=f"{settings.API_PREFIX}/docs",
    redoc_url=f"{settings.API_PREFIX}/redoc",
)


@app.on_event("startup")
async def startup_event():
    """Initialize logging, cleanup old logs and create tables on application startup."""
    setup_logging()
    cleanup_old_logs()
    if settings.DB_AUTO_CREATE:
        await init_db()
    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    await close_db()
    logger.info("Application shutdown complete")


# Rate-limit headers (innermost, sees the gateway decision on request.state)
setup_rate_limiting(app)

# Logging middleware assigns the request ID, so it wraps the rate-limit middleware
if settings.LOG_ENABLE_REQUEST_LOGGING:
    app.add_middleware(LoggingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-API-Key", "X-Request-ID", "Accept", "Origin"],
    expose_headers=[
        "X-Request-ID",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "X-RateLimit-Category",
        "Retry-After",
    ],
)

app.include_router(api_router, prefix=settings.API_PREFIX)


def _request_fields(request: Request) -> dict:
    return {
        "Path": request.url.path,
        "Method": request.method,
        "IP": request.client.host if request.client else None,
        "RequestID": getattr(request.state, "request_id", None),
    }


@app.exception_handler(RateLimitExceededException)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededException):
    logger.warning(
        sanitize_log_message(
            "Rate limit exceeded",
            Category=exc.decision.category,
            Reason=exc.decision.reason,
            RetryAfter=exc.headers.get("Retry-After"),
            **_request_fields(request)
        )
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=exc.headers
    )


@app.exception_handler(StoreUnavailableException)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableException):
    logger.error(
        sanitize_log_message(
            "Credential store unavailable",
            **_request_fields(request)
        )
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=exc.headers
    )


@app.exception_handler(CredentialServiceException)
async def credential_service_handler(request: Request, exc: CredentialServiceException):
    logger.warning(
        sanitize_log_message(
            "Credential request rejected",
            Error=exc.error_code,
            StatusCode=exc.status_code,
            **_request_fields(request)
        )
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=exc.headers
    )


# Generic exception handler for unhandled exceptions
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(
        sanitize_log_message(
            f"Unhandled exception: {type(exc).__name__}",
            ExceptionType=type(exc).__name__,
            ExceptionMessage=str(exc),
            **_request_fields(request)
        )
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error" if settings.ENVIRONMENT == "production" else str(exc),
            "error": "InternalError"
        }
    )


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.VERSION}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": f"{settings.API_PREFIX}/docs"
    }
