"""FastAPI dependencies."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from copyguard.db.session import get_db
from copyguard.notify.takedowns import TakedownService
from copyguard.worker.scheduler import MonitoringScheduler


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_takedown_service(request: Request) -> TakedownService:
    """Takedown service created by the application lifespan."""
    return request.app.state.takedown_service


def get_monitoring_scheduler(request: Request) -> MonitoringScheduler:
    """Monitoring scheduler created by the application lifespan."""
    return request.app.state.monitoring_scheduler
