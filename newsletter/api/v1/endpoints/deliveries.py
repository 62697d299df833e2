import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from newsletter.api.v1.endpoints.dependencies import get_service
from newsletter.db import get_db
from newsletter.schemas.delivery_schemas import DeliveryResponse, DeliverySummary
from newsletter.services.dispatch_service import DispatchService

router = APIRouter()


@router.get("/contents/{content_id}/deliveries", response_model=List[DeliveryResponse])
async def list_deliveries(
        content_id: uuid.UUID,
        db: AsyncSession = Depends(get_db),
        svc: DispatchService = Depends(get_service)
):
    return await svc.list_deliveries(content_id, db)


@router.get("/contents/{content_id}/deliveries/summary", response_model=DeliverySummary)
async def get_delivery_summary(
        content_id: uuid.UUID,
        db: AsyncSession = Depends(get_db),
        svc: DispatchService = Depends(get_service)
):
    return await svc.get_delivery_summary(content_id, db)
