"""Monitoring task routes."""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from copyguard.api.deps import get_database, get_monitoring_scheduler
from copyguard.errors import RecordNotFoundError
from copyguard.worker.scheduler import DEFAULT_SCHEDULE, MonitoringScheduler, register_monitoring

router = APIRouter(prefix="/api/monitoring", tags=["monitoring"])


class MonitoringCreate(BaseModel):
    work_id: str
    queries: List[str]
    schedule_spec: str = DEFAULT_SCHEDULE


class MonitoringTaskResponse(BaseModel):
    id: str
    work_id: str
    tenant_id: str
    queries: List[str]
    schedule_spec: str
    status: str
    last_run_at: datetime | None
    next_run_at: datetime | None
    run_count: int

    class Config:
        from_attributes = True


@router.post("", response_model=MonitoringTaskResponse, status_code=201)
async def create_monitoring_task(
    body: MonitoringCreate,
    db: AsyncSession = Depends(get_database),
):
    """Register a work for monitoring; it runs at the next scheduler tick."""
    try:
        return await register_monitoring(db, body.work_id, body.queries, body.schedule_spec)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/run")
async def run_scheduler_cycle(
    scheduler: MonitoringScheduler = Depends(get_monitoring_scheduler),
):
    """Run one scheduling pass now."""
    enqueued = await scheduler.run_cycle()
    return {"status": "completed", "enqueued": enqueued}
