# imgproxy/transport/middleware.py
"""
Request-scoped middleware: correlation IDs, access logging, last-resort 500.

Access logs carry the path only.  The proxy's ``url`` query parameter can
hold signed upstream URLs and must not end up in logs.
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from imgproxy.infra.logging_config import LogContext, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied IDs are echoed into logs and headers
MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Accept or mint an X-Request-ID and expose it on request.state"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        supplied = request.headers.get(REQUEST_ID_HEADER)
        request_id = supplied[:MAX_REQUEST_ID_LENGTH] if supplied else str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log start and end of every request.

    For a relayed image the logged duration is time-to-headers; the body is
    still streaming when the completion line is written.
    """

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        log = LogContext(logger, request_id=getattr(request.state, "request_id", None))
        method, path = request.method, request.url.path
        started = time.perf_counter()

        log.info(
            f"Request started: {method} {path}",
            extra={"method": method, "path": path,
                   "client_ip": request.client.host if request.client else None},
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            log.error(
                f"Request failed: {method} {path} error={exc.__class__.__name__} "
                f"duration={(time.perf_counter() - started) * 1000:.2f}ms",
                extra={"method": method, "path": path, "error_type": exc.__class__.__name__},
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        log.info(
            f"Request completed: {method} {path} status={response.status_code} "
            f"duration={duration_ms:.2f}ms",
            extra={"method": method, "path": path,
                   "status_code": response.status_code, "duration_ms": duration_ms},
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn anything that escaped the exception handlers into a JSON 500"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                f"Unhandled exception: {exc.__class__.__name__}",
                extra={"request_id": request_id},
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
            )
