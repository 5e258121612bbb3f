"""
ragbridge - relays chat questions to an answer worker over Redis pub/sub.

Features:
- Query/response correlation with per-query timeouts
- Per-caller rate limiting
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
import asyncio
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from . import __version__
from .config import Settings, get_settings
from .logging import setup_logging, get_logger
from .api.router import router
from .api.errors import register_error_handlers
from .middleware import CorrelationIdMiddleware, MetricsMiddleware
from .metrics import Metrics
from .health import HealthChecker
from .rate_limiter import CallerRateLimiter
from .services.event_bus import build_event_bus
from .services.relay import QueryRelay

VERSION = __version__

logger = get_logger()


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the HTTP app with its own bus, rate limiter and metrics registry.

    The bus is connected on startup and closed on shutdown.
    """
    settings = settings or get_settings()

    metrics = Metrics(service_name=settings.SERVICE_NAME, version=VERSION)
    bus = build_event_bus(settings, metrics=metrics)
    rate_limiter = CallerRateLimiter(max_entries=settings.RATE_LIMIT_MAX_ENTRIES)
    relay = QueryRelay(
        bus,
        rate_limiter,
        rate_per_minute=settings.USER_RATE_LIMIT_PER_MINUTE,
        timeout_ms=settings.RESPONSE_TIMEOUT_MS,
        metrics=metrics,
    )
    health_checker = HealthChecker(bus, service_name=settings.SERVICE_NAME, version=VERSION)

    app = FastAPI(
        title="ragbridge",
        version=VERSION,
        description="Chat-to-RAG query bridge over Redis pub/sub",
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.bus = bus
    app.state.rate_limiter = rate_limiter
    app.state.relay = relay
    app.state.sweeper = None

    # Added last runs first: correlation id is bound before metrics log
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(CorrelationIdMiddleware)
    register_error_handlers(app)

    app.include_router(router)
    app.mount("/metrics", make_asgi_app(registry=metrics.registry))

    @app.get("/")
    async def root():
        return {"status": "ok", "service": settings.SERVICE_NAME}

    @app.get("/health")
    async def health():
        """Liveness probe: 200 while the process is running."""
        return health_checker.liveness()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe.

        Returns:
            200: Bus is connected and the host has resources
            503: Service is not ready
        """
        metrics.update_system_metrics()
        result = await health_checker.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(result, status_code=status_code)

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "service_starting",
            version=VERSION,
            env=settings.ENV,
            adapter=settings.BUS_ADAPTER,
            rate_limit_per_minute=settings.USER_RATE_LIMIT_PER_MINUTE,
            response_timeout_ms=settings.RESPONSE_TIMEOUT_MS,
        )
        # BusConnectionError here aborts startup
        await bus.initialize()
        if settings.RATE_LIMIT_SWEEP_INTERVAL_S > 0:
            app.state.sweeper = asyncio.create_task(
                rate_limiter.sweep_periodically(
                    settings.USER_RATE_LIMIT_PER_MINUTE,
                    settings.RATE_LIMIT_SWEEP_INTERVAL_S,
                )
            )

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("service_stopping", pending=bus.pending_count)
        sweeper = app.state.sweeper
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
            app.state.sweeper = None
        await bus.close()
        metrics.app_up.labels(service=settings.SERVICE_NAME, version=VERSION).set(0)

    return app


def run():
    import uvicorn

    settings = get_settings()
    setup_logging(json_output=settings.LOG_JSON, service_name=settings.SERVICE_NAME, level=settings.LOG_LEVEL)
    uvicorn.run(
        "ragbridge.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
    )


if __name__ == "__main__":
    run()
