import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from newsletter.api.v1.endpoints.dependencies import get_service
from newsletter.db import get_db
from newsletter.schemas.job_schemas import JobResponse, JobStats
from newsletter.services.dispatch_service import DispatchService

router = APIRouter()


@router.get("/jobs/stats/overview", response_model=JobStats)
async def get_job_stats(
        db: AsyncSession = Depends(get_db),
        svc: DispatchService = Depends(get_service)
):
    return await svc.get_job_stats(db)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(
        job_id: uuid.UUID,
        db: AsyncSession = Depends(get_db),
        svc: DispatchService = Depends(get_service)
):
    return await svc.get_job(job_id, db)
