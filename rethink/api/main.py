"""FastAPI application configuration and setup.

Main entry point for the HTTP API with CORS, middleware,
rate limiting, and lifecycle management.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rethink import __version__
from rethink.api.auth import verify_api_key
from rethink.api.rate_limit import MAX_REQUEST_BODY_BYTES, limiter
from rethink.api.routes import api_router
from rethink.exceptions import (
    AuthFailure,
    CircuitOpenError,
    ConfigurationError,
    KeyNotFoundError,
    LLMError,
    ProviderError,
    RethinkError,
    ScopeDeniedError,
    ThinkingTimeoutError,
    ValidationError,
)
from rethink.runtime import ThinkingRuntime, build_runtime
from rethink.settings import Settings, get_settings

# Context variable for correlation ID (thread-safe, async-safe)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Singleton app instance
_app: FastAPI | None = None

# Most specific first: CircuitOpenError and ThinkingTimeoutError are LLMErrors
_STATUS_CODES: tuple[tuple[type[RethinkError], int], ...] = (
    (AuthFailure, 401),
    (ScopeDeniedError, 403),
    (KeyNotFoundError, 404),
    (ValidationError, 400),
    (ConfigurationError, 500),
    (CircuitOpenError, 503),
    (ThinkingTimeoutError, 504),
    (ProviderError, 502),
    (LLMError, 502),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    - Startup: open the keystore and register the bootstrap key
    - Shutdown: zeroize key material
    """
    runtime: ThinkingRuntime = app.state.runtime
    runtime.start()
    yield
    runtime.stop()


def create_app(settings: Settings | None = None, runtime: ThinkingRuntime | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional settings override (uses get_settings() if not provided)
        runtime: Optional prebuilt runtime (built from settings if not provided)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = runtime.settings if runtime is not None else get_settings()
    if runtime is None:
        runtime = build_runtime(settings)

    app = FastAPI(
        title="Rethink",
        description="Recursive thinking over a resilient multi-provider LLM dispatcher",
        version=__version__,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.runtime = runtime

    # Configure CORS; restrict methods and headers outside development
    relaxed = settings.environment in ("development", "testing")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["*"] if relaxed else ["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"]
        if relaxed
        else ["Authorization", "Content-Type", "X-API-Key", "X-Correlation-ID"],
    )

    # Configure rate limiting
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.middleware("http")(_body_size_limit_middleware)
    app.middleware("http")(_security_headers_middleware)
    # Correlation ID middleware (must be before routes)
    app.middleware("http")(_correlation_middleware)

    # Lazy import to avoid circular dependency
    from rethink.api.middleware import RequestTracingMiddleware

    app.add_middleware(RequestTracingMiddleware)

    # Auth is applied globally but exempts probe endpoints (handled in auth.py)
    app.include_router(api_router, prefix="/api/v1", dependencies=[Depends(verify_api_key)])

    _register_exception_handlers(app)

    return app


def _get_allowed_origins(settings: Settings) -> list[str]:
    """Get allowed CORS origins.

    Priority:
    1. Explicit ALLOWED_ORIGINS env var (comma-separated)
    2. Environment-based defaults (anything in development/testing, nothing otherwise)
    """
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.environment in ("development", "testing"):
        return ["*"]
    return []


async def _body_size_limit_middleware(request: Request, call_next):
    """Reject requests whose declared body exceeds MAX_REQUEST_BODY_BYTES with 413."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_BODY_BYTES:
        return JSONResponse(
            status_code=413,
            content={
                "error": {
                    "code": 413,
                    "message": f"Request body too large. Maximum size is {MAX_REQUEST_BODY_BYTES} bytes.",
                    "type": "request_too_large",
                }
            },
        )
    return await call_next(request)


async def _security_headers_middleware(request: Request, call_next):
    """Add security-related HTTP headers to every response."""
    settings: Settings = request.app.state.settings
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.environment in ("production", "staging"):
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"

    return response


async def _correlation_middleware(request: Request, call_next):
    """Generate or propagate X-Correlation-ID and expose it via context."""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    _correlation_id.set(correlation_id)

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


def get_correlation_id() -> str | None:
    """Get the current request's correlation ID from context.

    Returns:
        Correlation ID string or None if not in request context
    """
    return _correlation_id.get()


def status_code_for(exc: RethinkError) -> int:
    """HTTP status for an application error."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _error_body(status_code: int, message: str, error_type: str, correlation_id: str) -> dict[str, Any]:
    return {
        "error": {
            "code": status_code,
            "message": message,
            "type": error_type,
            "correlation_id": correlation_id,
        }
    }


def _register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers."""
    logger = structlog.get_logger()

    @app.exception_handler(RethinkError)
    async def rethink_error_handler(request: Request, exc: RethinkError) -> JSONResponse:
        """Handle application errors with correlation ID."""
        settings: Settings = request.app.state.settings
        correlation_id = get_correlation_id() or exc.correlation_id
        error_type = exc.__class__.__name__.replace("Error", "_error").lower()
        status_code = status_code_for(exc)

        log_kwargs: dict[str, Any] = {
            "error_type": error_type,
            "status": status_code,
            "correlation_id": correlation_id,
        }
        if isinstance(exc, LLMError) and exc.provider:
            log_kwargs["provider"] = exc.provider
        if isinstance(exc, ProviderError):
            log_kwargs["attempts"] = exc.attempts
        if status_code >= 500:
            logger.error("Rethink error", exc_info=exc, **log_kwargs)
        else:
            logger.info("Rethink error", message=str(exc), **log_kwargs)

        # Client errors keep their message; server-side ones are sanitized outside debug
        if status_code < 500 or settings.debug:
            message = str(exc)
        else:
            message = f"An error occurred. Correlation ID: {correlation_id}"

        headers = {"X-Correlation-ID": correlation_id}
        if status_code == 401:
            headers["WWW-Authenticate"] = "Bearer"
        return JSONResponse(
            status_code=status_code,
            content=_error_body(status_code, message, error_type, correlation_id),
            headers=headers,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent format."""
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, str(exc.detail), "http_error", correlation_id),
            headers={"X-Correlation-ID": correlation_id},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        settings: Settings = request.app.state.settings
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        logger.exception("Unhandled exception", correlation_id=correlation_id, exc_info=exc)

        detail = str(exc) if settings.debug else "Internal server error"
        return JSONResponse(
            status_code=500,
            content=_error_body(500, detail, "internal_error", correlation_id),
            headers={"X-Correlation-ID": correlation_id},
        )


def get_app() -> FastAPI:
    """Get or create the singleton FastAPI application."""
    global _app
    if _app is None:
        _app = create_app()
    return _app


# For uvicorn: use "rethink.api.main:get_app" with --factory flag,
# or "rethink.api.main:app" which lazily initializes on first access.
def __getattr__(name: str) -> Any:
    """Module-level __getattr__ for lazy app initialization.

    Only creates the app when 'app' is accessed, not at import time, so
    importing this module never builds provider clients.
    """
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
