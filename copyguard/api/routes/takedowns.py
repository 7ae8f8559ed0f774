"""Takedown request routes."""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from copyguard.api.deps import get_takedown_service
from copyguard.db.models import TakedownPlatform, TakedownStatus
from copyguard.errors import (
    InvalidTransitionError,
    MissingTemplateFieldsError,
    RecordNotFoundError,
    TemplateNotFoundError,
)
from copyguard.notify.takedowns import TakedownService

router = APIRouter(prefix="/api/takedowns", tags=["takedowns"])


class TakedownCreate(BaseModel):
    case_id: str
    platform: TakedownPlatform
    template_id: str
    data: dict[str, Any] = Field(default_factory=dict)


class TakedownStatusUpdate(BaseModel):
    status: TakedownStatus
    response: Optional[dict[str, Any]] = None


class TakedownResponse(BaseModel):
    id: str
    case_id: str
    platform: str
    template_used: str | None
    status: str
    attempts: int
    last_attempt_at: datetime | None
    sent_at: datetime | None
    responded_at: datetime | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class TemplateResponse(BaseModel):
    id: str
    platform: str
    name: str
    type: str
    requiredFields: List[str]
    recipientEmail: str | None


@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    platform: Optional[TakedownPlatform] = None,
    service: TakedownService = Depends(get_takedown_service),
):
    """List available notice templates, optionally for one platform."""
    return [t.to_dict() for t in service.list_templates(platform)]


@router.post("", response_model=TakedownResponse, status_code=201)
async def create_takedown(
    body: TakedownCreate,
    service: TakedownService = Depends(get_takedown_service),
):
    """Create a takedown request for a case and queue it for dispatch."""
    try:
        return await service.create(body.case_id, body.platform, body.template_id, body.data)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MissingTemplateFieldsError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": str(e), "missingFields": e.missing},
        )


@router.post("/{takedown_id}/retry", response_model=TakedownResponse)
async def retry_takedown(
    takedown_id: str,
    service: TakedownService = Depends(get_takedown_service),
):
    """Queue one more attempt for a FAILED or REJECTED takedown."""
    try:
        return await service.retry(takedown_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{takedown_id}/status", response_model=TakedownResponse)
async def update_takedown_status(
    takedown_id: str,
    body: TakedownStatusUpdate,
    service: TakedownService = Depends(get_takedown_service),
):
    """Record an external outcome (acknowledged, removed, rejected)."""
    try:
        return await service.update_status(takedown_id, body.status, body.response)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
