"""
Broker Service Main

Sidecar message broker: service registry, round-robin point-to-point
delivery with circuit breaking, durable topic fan-out and a simplified
two-phase commit, exposed over HTTP and a gRPC MessageBroker service.

The registry lives in this process. Run exactly one worker.
"""
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.config.settings import Settings, get_settings
from core.exceptions import (
    BrokerException,
    DeliveryFailed,
    EnvelopeDecodeException,
    ServiceUnavailable,
)
from core.health import create_health_response
from core.logging.correlation import CorrelationIDMiddleware, get_correlation_id
from core.logging.logger import configure_logger, get_logger
from core.monitoring.metrics import start_metrics_server
from core.utils import get_utc_isoformat
from services.broker.dispatcher import Broker
from services.broker.grpc_server import start_grpc_server
from services.broker.routers import admin, messaging

configure_logger()
logger = get_logger("broker-service")

ERROR_STATUS_CODES = {
    ServiceUnavailable: 503,
    DeliveryFailed: 502,
    EnvelopeDecodeException: 400,
}


def status_code_for(exc: BrokerException) -> int:
    for exc_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status_code
    return 500


def create_app(broker: Optional[Broker] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the broker application.

    Args:
        broker: Pre-built engine (tests); built from settings on startup otherwise
        settings: Overrides the cached process settings
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(
            "Starting broker",
            environment=settings.ENVIRONMENT,
            durable_log=settings.DURABLE_LOG_BACKEND,
            max_attempts=settings.BROKER_MAX_ATTEMPTS,
        )
        if getattr(app.state, "broker", None) is None:
            app.state.broker = Broker.from_settings(settings)
        app.state.started_at = time.monotonic()
        await app.state.broker.start()
        app.state.grpc_server = None
        if settings.GRPC_ENABLED:
            app.state.grpc_server = await start_grpc_server(
                app.state.broker, settings.HOST, settings.GRPC_PORT
            )
        logger.info("✓ Broker ready", port=settings.PORT)

        yield

        # Shutdown
        logger.info("Shutting down broker...")
        if app.state.grpc_server is not None:
            await app.state.grpc_server.stop(grace=1.0)
        await app.state.broker.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Service mesh sidecar: registry, resilient delivery, pub/sub and 2PC",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.broker = broker
    app.add_middleware(CorrelationIDMiddleware)

    app.include_router(admin.router, tags=["Admin"])
    app.include_router(messaging.router, tags=["Messaging"])

    @app.get("/")
    async def root():
        return {"status": "Online", "protocols": ["JSON", "Protobuf"]}

    @app.get("/health")
    async def health_check(request: Request):
        broker: Broker = request.app.state.broker
        try:
            durable_log = "connected" if await broker.durable_log.ping() else "disconnected"
        except Exception as e:
            logger.error("Durable log health check failed", error=str(e))
            durable_log = "error"

        snapshot = broker.registry.snapshot()
        instances = [
            inst
            for pool in snapshot["services"].values()
            for inst in pool["instances"]
        ]
        started_at = getattr(request.app.state, "started_at", None)
        health = create_health_response(
            service="mesh-broker",
            version=settings.APP_VERSION,
            durable_log=durable_log,
            uptime_seconds=time.monotonic() - started_at if started_at is not None else None,
            details={
                "services": len(snapshot["services"]),
                "instances": len(instances),
                "healthy_instances": sum(1 for inst in instances if inst["healthy"]),
                "subscribed_topics": len(snapshot["subscriptions"]),
            },
        )
        if health.status == "unhealthy":
            return JSONResponse(status_code=503, content=health.model_dump(mode="json"))
        return health

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(BrokerException)
    async def broker_exception_handler(request: Request, exc: BrokerException):
        status_code = status_code_for(exc)
        logger.warning(
            "Request failed",
            error_code=exc.error_code,
            message=exc.message,
            status_code=status_code,
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "error": exc.to_dict(),
                "correlation_id": get_correlation_id(request),
                "timestamp": get_utc_isoformat(),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "status_code": 500,
                "timestamp": get_utc_isoformat(),
            },
        )

    return app


app = create_app()


def run():
    settings = get_settings()
    if settings.METRICS_PORT:
        start_metrics_server(settings.METRICS_PORT)
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        workers=settings.WORKERS,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
