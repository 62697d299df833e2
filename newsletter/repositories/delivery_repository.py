import uuid
from datetime import datetime
from typing import Optional, List, Dict, Union

from sqlalchemy.ext.asyncio import AsyncSession

from newsletter.constants.delivery_status import DeliveryStatus
from newsletter.models.delivery_model import Delivery
from newsletter.repositories.base_repository import AsyncBaseRepository


def _status_value(status: Union[DeliveryStatus, str]) -> str:
    return status.value if isinstance(status, DeliveryStatus) else status


class DeliveryRepository(AsyncBaseRepository[Delivery]):
    def __init__(self):
        super().__init__(Delivery)

    async def create_delivery(
            self,
            db: AsyncSession,
            *,
            content_id: uuid.UUID,
            subscriber_id: uuid.UUID,
            email: str,
            status: Union[DeliveryStatus, str] = DeliveryStatus.pending
    ) -> Delivery:
        return await self.create(db, obj_in={
            "content_id": content_id,
            "subscriber_id": subscriber_id,
            "email": email,
            "status": _status_value(status),
        })

    async def update_delivery_status(
            self,
            db: AsyncSession,
            delivery_id: uuid.UUID,
            status: Union[DeliveryStatus, str],
            sent_at: Optional[datetime] = None,
            error_message: Optional[str] = None
    ) -> bool:
        count = await self.bulk_update(
            db,
            condition={"id": delivery_id},
            values={
                "status": _status_value(status),
                "sent_at": sent_at,
                "error_message": error_message,
            }
        )
        return count > 0

    async def get_by_content_and_subscriber(
            self,
            db: AsyncSession,
            content_id: uuid.UUID,
            subscriber_id: uuid.UUID
    ) -> Optional[Delivery]:
        results = await self.get_by_condition(
            db,
            {"content_id": content_id, "subscriber_id": subscriber_id},
            limit=1
        )
        return results[0] if results else None

    async def list_by_content(self, db: AsyncSession, content_id: uuid.UUID) -> List[Delivery]:
        return await self.get_by_condition(
            db,
            {"content_id": content_id},
            order_by=Delivery.created_at.asc()
        )

    async def count_by_status(self, db: AsyncSession, content_id: uuid.UUID) -> Dict[str, int]:
        counts = await self.count_by(db, "status", {"content_id": content_id})
        return {status.value: counts.get(status.value, 0) for status in DeliveryStatus}
