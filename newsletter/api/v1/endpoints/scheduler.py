from typing import Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from newsletter.api.v1.endpoints.dependencies import get_service
from newsletter.db import get_db
from newsletter.services.dispatch_service import DispatchService

router = APIRouter()


@router.get("/scheduler/stats")
async def get_scheduler_stats(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"enabled": False}
    return {"enabled": True, **scheduler.get_stats()}


@router.get("/queue/stats", response_model=Dict[str, int])
async def get_queue_stats(
        db: AsyncSession = Depends(get_db),
        svc: DispatchService = Depends(get_service)
):
    return await svc.get_queue_stats(db)
