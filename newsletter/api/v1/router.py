from fastapi import APIRouter

from newsletter.api.v1.endpoints import jobs, deliveries, scheduler

api_v1_router = APIRouter()

api_v1_router.include_router(jobs.router, tags=["jobs"])
api_v1_router.include_router(deliveries.router, tags=["deliveries"])
api_v1_router.include_router(scheduler.router, tags=["scheduler"])
