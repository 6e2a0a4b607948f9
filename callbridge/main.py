"""
CallBridge - call placement and progress tracking over an event bus.

Features:
- Originate calls and wait for their answer/hangup result
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from .config import get_settings
from .errors import ConnectionFailed
from .logging import setup_logging, get_logger
from .api.router import router
from .api.errors import register_error_handlers
from .middleware import CorrelationIdMiddleware, MetricsMiddleware
from .metrics import Metrics
from .health import HealthChecker
from .services.wiring import create_correlator

VERSION = "0.1.0"

settings = get_settings()

setup_logging(json_output=settings.LOG_JSON, service_name="callbridge")
logger = get_logger()

metrics = Metrics(service_name="callbridge", version=VERSION)
health_checker = HealthChecker(service_name="callbridge", version=VERSION)

app = FastAPI(
    title="CallBridge",
    version=VERSION,
    description="Call origination and progress tracking over an event bus",
)
app.state.correlator = create_correlator(metrics=metrics)

# Correlation ID must wrap metrics so request logs carry it
app.add_middleware(MetricsMiddleware, metrics=metrics)
app.add_middleware(CorrelationIdMiddleware)
register_error_handlers(app)

app.include_router(router)

metrics_app = make_asgi_app(registry=metrics.registry)
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    """Liveness probe."""
    return health_checker.liveness()


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe.

    Returns:
        200: Bus connected and result store reachable
        503: Service is not ready
    """
    result = await health_checker.readiness(app.state.correlator)
    status_code = 200 if result["status"] == "ready" else 503
    return JSONResponse(content=result, status_code=status_code)


@app.on_event("startup")
async def startup_event():
    logger.info(
        "service_starting",
        version=VERSION,
        env=settings.ENV,
        bus_adapter=settings.BUS_ADAPTER,
        result_store=settings.RESULT_STORE,
    )
    try:
        await app.state.correlator.open()
    except ConnectionFailed as e:
        # Stay up and report not-ready; the orchestrator decides whether to restart
        logger.error("bus_connect_failed", reason=e.reason, detail=e.detail)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("service_stopping")
    await app.state.correlator.close()
    metrics.app_up.labels(service="callbridge", version=VERSION).set(0)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "callbridge.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
    )
