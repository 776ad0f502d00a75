"""Request tracing middleware for FastAPI.

Logs request method, path, status code, duration, and correlation ID, and
feeds the runtime's metrics collector.
"""

import time
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from rethink.metrics import MetricsCollector, get_metrics_collector

logger = structlog.get_logger()


def _metrics_for(request: Request) -> MetricsCollector:
    runtime = getattr(request.app.state, "runtime", None)
    return runtime.metrics if runtime is not None else get_metrics_collector()


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Middleware for request tracing and metrics collection."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        metrics = _metrics_for(request)
        metrics.increment_active_requests()

        # Lazy import to avoid circular dependency
        from rethink.api.main import get_correlation_id

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start) * 1000
            metrics.record_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            logger.info(
                "request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round(duration_ms, 2),
                correlation_id=get_correlation_id(),
            )
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            error_type = type(e).__name__
            # Surfaces as a 500 from the outermost handler
            metrics.record_request(
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=duration_ms,
            )
            metrics.record_error(error_type)
            logger.error(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                correlation_id=get_correlation_id(),
                error_type=error_type,
                exc_info=e,
            )
            # Re-raise to let exception handlers process it
            raise

        finally:
            metrics.decrement_active_requests()
