"""
FastAPI application for Certificate Expiry Exporter.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from cert_expiry_exporter import __version__
from cert_expiry_exporter.config import Config
from cert_expiry_exporter.logger import get_logger
from cert_expiry_exporter.metrics import MetricsCollector
from cert_expiry_exporter.scheduler import CheckScheduler
from cert_expiry_exporter.store import MetricStore


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan handler that suppresses CancelledError during shutdown."""
    try:
        yield
    except asyncio.CancelledError:
        pass


def create_app(
    store: MetricStore,
    metrics: MetricsCollector,
    scheduler: CheckScheduler,
    config: Config,
    lifespan_override: Optional[Any] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        store: Metric store holding the latest measurements
        metrics: Metrics collector instance
        scheduler: Check scheduler instance
        config: Configuration instance

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Certificate Expiry Exporter",
        description="Exports days remaining until remote certificate expiry",
        version=__version__,
        lifespan=lifespan_override or lifespan,
    )

    logger = get_logger("api")

    @app.get("/metrics", response_class=PlainTextResponse)
    async def get_metrics() -> PlainTextResponse:
        try:
            metrics_data: str = metrics.get_metrics()
            return PlainTextResponse(content=metrics_data, media_type=metrics.get_content_type())
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            raise HTTPException(status_code=500, detail="Failed to generate metrics") from e

    @app.get("/healthz", response_class=JSONResponse)
    async def get_health() -> JSONResponse:
        try:
            scheduler_health = await scheduler.get_health_status()
            metrics_health = metrics.get_registry_status()

            health_status = {
                **scheduler_health,
                **metrics_health,
                "endpoints": store.status_counts(),
                "status": "healthy",
                "version": __version__,
            }

            return JSONResponse(content=health_status)
        except Exception as e:
            logger.error(f"Failed to get health status: {e}")
            return JSONResponse(content={"status": "error", "error": str(e)}, status_code=500)

    @app.get("/endpoints", response_class=JSONResponse)
    async def get_endpoints() -> JSONResponse:
        entries = [
            {"url": key.url, "origin_prometheus": key.origin, **measurement.to_dict()}
            for key, measurement in sorted(store.snapshot().items())
        ]
        return JSONResponse(content={"endpoints": entries, "count": len(entries)})

    @app.post("/check", response_class=JSONResponse)
    async def trigger_check() -> JSONResponse:
        try:
            logger.info("Manual check cycle triggered via API")
            summary = await scheduler.run_cycle(reload=False)
            return JSONResponse(content=summary)
        except Exception as e:
            logger.error(f"Manual check failed: {e}")
            raise HTTPException(status_code=500, detail=f"Check failed: {e}") from e

    @app.get("/", response_class=Response)
    async def root() -> Response:
        text = (
            f"Certificate Expiry Exporter v{__version__}\n"
            f"Endpoints: {len(store)}\n"
            f"Check interval: {config.check_interval}\n\n"
            "GET  /metrics    Prometheus metrics\n"
            "GET  /healthz    Health status\n"
            "GET  /endpoints  Latest measurement per endpoint\n"
            "POST /check      Run a check cycle now\n"
        )
        return PlainTextResponse(content=text)

    return app
