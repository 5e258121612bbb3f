"""
HTTP middleware for correlation ids and Prometheus metrics.
"""
import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import structlog

CORRELATION_HEADER = "x-correlation-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Binds a correlation id to the structlog context for each request.

    The id comes from the X-Correlation-ID header when present, otherwise a
    fresh UUID; it is echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            http_method=request.method,
            http_path=request.url.path,
        )

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Records request counts, durations and in-flight requests.
    """

    def __init__(self, app, metrics, skip_paths: tuple[str, ...] = ("/metrics",)):
        super().__init__(app)
        self.metrics = metrics
        self.skip_paths = skip_paths

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(self.skip_paths):
            return await call_next(request)

        service = self.metrics.service_name
        active = self.metrics.http_requests_active.labels(service=service)
        active.inc()
        start_time = time.monotonic()
        logger = structlog.get_logger()
        status = 500

        try:
            response = await call_next(request)
            status = response.status_code
            return response
        except Exception as e:
            logger.error("http.request_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            duration = time.monotonic() - start_time
            self.metrics.http_requests_total.labels(
                service=service,
                method=request.method,
                path=request.url.path,
                status=status,
            ).inc()
            self.metrics.http_request_duration.labels(
                service=service,
                method=request.method,
                path=request.url.path,
            ).observe(duration)
            active.dec()
            logger.info("http.request", http_status=status, duration_ms=round(duration * 1000, 2))
