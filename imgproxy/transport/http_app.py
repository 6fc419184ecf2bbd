# imgproxy/transport/http_app.py
"""
HTTP application for the image proxy.

Security layers:
1. Public: image proxy (allowlisted upstream hosts only, rate limited)
2. Internal: metrics (METRICS_TOKEN or internal network)
3. No information leakage in production (sanitised error details, no docs)
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from imgproxy.config import Settings, settings as default_settings
from imgproxy.core.errors import ProxyError, ProxyTransportError
from imgproxy.core.redirect_resolver import RedirectResolver
from imgproxy.core.service import ImageProxyService
from imgproxy.infra.http_client import close_all_sessions
from imgproxy.infra.logging_config import setup_logging, get_logger
from imgproxy.infra.metrics import get_metrics_collector
from imgproxy.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency
from imgproxy.infra.upstream_fetcher import AiohttpUpstreamFetcher
from imgproxy.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from imgproxy.transport.proxy_routes import router as proxy_router
from imgproxy.transport.security import (
    require_metrics_auth,
    SecurityHeaders,
    sanitize_error_message,
)

# Initialize logging first
setup_logging(
    level=default_settings.log_level,
    use_json=default_settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# MIDDLEWARE FOR SECURITY HEADERS
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    def __init__(self, app, settings: Settings = default_settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response, self.settings)


# ============================================================================
# WIRING
# ============================================================================

def build_proxy_service(s: Settings) -> ImageProxyService:
    """Build the proxy pipeline. The allowlist is frozen here, once."""
    allowed_hosts = s.allowed_host_set
    fetcher = AiohttpUpstreamFetcher.from_settings(s)
    resolver = RedirectResolver(
        fetcher=fetcher,
        allowed_hosts=allowed_hosts,
        max_redirects=s.proxy_max_redirects,
    )
    return ImageProxyService(resolver)


def _make_lifespan(s: Settings):
    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        """Application lifecycle: startup and shutdown"""

        # STARTUP
        logger.info(f"Starting image proxy: env={s.app_env}")

        if s.is_production:
            missing = s.validate_required_for_production()
            if missing:
                logger.critical(f"Missing required production settings: {missing}")
                raise RuntimeError(f"Missing production config: {missing}")

            if s.log_level.upper() == "DEBUG":
                logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
                raise RuntimeError("LOG_LEVEL=DEBUG in production")

        fastapi_app.state.proxy_service = build_proxy_service(s)
        fastapi_app.state.chunk_size = s.proxy_chunk_size
        fastapi_app.state.rate_limiter = RateLimitDependency(
            InMemoryRateLimiter(max_requests=s.rate_limit_per_minute, window_seconds=60),
            trust_proxy_headers=s.trust_proxy_headers,
        )

        logger.info(
            f"Proxy settings: allowed_hosts={len(s.allowed_host_set)}, "
            f"max_redirects={s.proxy_max_redirects}, "
            f"hop_timeout={s.proxy_hop_timeout_seconds}s, chunk_size={s.proxy_chunk_size}"
        )
        logger.info("Application startup complete")

        yield

        # SHUTDOWN
        logger.info("Shutting down application")
        await close_all_sessions()
        logger.info("Application shutdown complete")

    return lifespan


# ============================================================================
# CREATE APP
# ============================================================================

def create_app(s: Settings = default_settings) -> FastAPI:
    fastapi_app = FastAPI(
        title="Image Proxy",
        description="Allowlisted, redirect-bounded, streaming image proxy",
        version="1.0.0",
        lifespan=_make_lifespan(s),
        # Security: Completely disable docs in production (None, not conditional URL)
        docs_url=None if s.is_production else "/docs",
        redoc_url=None if s.is_production else "/redoc",
        openapi_url=None if s.is_production else "/openapi.json",
    )
    # Read by the /metrics guard
    fastapi_app.state.settings = s

    # CORS - images are fetched by browser pages, GET only
    if s.is_production or s.is_staging:
        fastapi_app.add_middleware(
            CORSMiddleware,
            allow_origins=s.allowed_origins if s.allowed_origins != ["*"] else [],
            allow_credentials=False,
            allow_methods=["GET"],
            allow_headers=["Content-Type"],
        )
    else:
        fastapi_app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    fastapi_app.add_middleware(SecurityHeadersMiddleware, settings=s)
    fastapi_app.add_middleware(ErrorHandlingMiddleware)
    fastapi_app.add_middleware(RequestLoggingMiddleware, enabled=s.enable_request_logging)
    fastapi_app.add_middleware(RequestIDMiddleware)

    _register_exception_handlers(fastapi_app, s)
    _register_routes(fastapi_app, s)
    return fastapi_app


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _register_exception_handlers(fastapi_app: FastAPI, s: Settings) -> None:

    @fastapi_app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        """Map proxy errors to their status code and JSON body"""
        if exc.status_code >= 500:
            logger.warning(
                f"Proxy failure: {exc.__class__.__name__}",
                extra={"status_code": exc.status_code},
            )

        payload = exc.to_payload(include_details=not s.is_production)
        if isinstance(exc, ProxyTransportError) and s.is_production:
            payload["details"] = sanitize_error_message(exc, s.is_production)

        return JSONResponse(status_code=exc.status_code, content=payload)

    @fastapi_app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with appropriate logging"""
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @fastapi_app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={"error": sanitize_error_message(exc, s.is_production)},
        )


# ============================================================================
# ROUTES
# ============================================================================

def _register_routes(fastapi_app: FastAPI, s: Settings) -> None:

    fastapi_app.include_router(proxy_router)

    @fastapi_app.get("/health")
    @fastapi_app.get("/api/health", include_in_schema=False)
    def health():
        """
        Basic health check - PUBLIC endpoint.
        Used by load balancers, monitoring, etc.
        """
        return {"status": "healthy"}

    if s.enable_metrics:
        @fastapi_app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
        def metrics():
            """
            Metrics endpoint - INTERNAL/METRICS only.

            Access: Internal network OR METRICS_TOKEN
            """
            return get_metrics_collector().get_metrics()

    @fastapi_app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"], include_in_schema=False)
    async def catch_all(path: str):
        """
        Catch-all route for undefined endpoints.
        Returns generic 404 without revealing information.
        """
        logger.warning(f"404 - Unknown route accessed: {path[:100]}")
        if path == "api" or path.startswith("api/"):
            raise HTTPException(status_code=404, detail="API endpoint not found")
        raise HTTPException(status_code=404, detail="Not found")


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "imgproxy.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not default_settings.is_production,
        log_level=default_settings.log_level.lower(),
        access_log=not default_settings.is_production,  # Disable in prod (use middleware logging)
        server_header=False,  # Don't expose server version
        date_header=False,  # Don't expose server time
    )
