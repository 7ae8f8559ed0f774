"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from copyguard.api.routes import monitoring, takedowns
from copyguard.config import settings
from copyguard.db.models import Base
from copyguard.db.session import AsyncSessionLocal, engine
from copyguard.logging_config import setup_logging
from copyguard.notify.takedowns import TakedownService
from copyguard.worker.queue import crawl_channel, takedown_channel
from copyguard.worker.scheduler import MonitoringScheduler, setup_scheduler

setup_logging()
logger = logging.getLogger(__name__)

# Global scheduler
scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global scheduler

    # Startup
    logger.info("Starting CopyGuard...")

    # Initialize database
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.takedown_service = TakedownService(AsyncSessionLocal, takedown_channel())
    app.state.monitoring_scheduler = MonitoringScheduler(AsyncSessionLocal, crawl_channel())

    if settings.scheduler_enabled:
        scheduler = setup_scheduler(app.state.monitoring_scheduler)
        scheduler.start()
        logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")

    if scheduler:
        scheduler.shutdown()

    await app.state.takedown_service.channel.close()
    await app.state.monitoring_scheduler.channel.close()
    await engine.dispose()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="CopyGuard",
    description="Detect unauthorized copies of written works and drive takedowns",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(takedowns.router)
app.include_router(monitoring.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    # Run with uvicorn
    uvicorn.run(
        "copyguard.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
