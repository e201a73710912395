"""
Request logging middleware.

Binds a request id to the structlog context for the duration of a request,
so engine log lines can be correlated with the HTTP call that caused them.
"""
import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from staffplan.platform.logging import bind_request_context, clear_request_context, get_logger

logger = get_logger(__name__)

# Probes and scrapes are too noisy to log
QUIET_PATHS = ("/health/live", "/health/ready", "/metrics")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        path = request.url.path
        start_time = time.time()

        clear_request_context()
        bind_request_context(request_id=request_id, method=request.method, path=path)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            if not path.startswith(QUIET_PATHS):
                logger.info(
                    "http.request",
                    status_code=response.status_code,
                    duration_ms=round((time.time() - start_time) * 1000, 2),
                )
            return response
        except Exception as e:
            logger.error(
                "http.request_failed",
                duration_ms=round((time.time() - start_time) * 1000, 2),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise
        finally:
            clear_request_context()
