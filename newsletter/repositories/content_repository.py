import uuid
from typing import Optional, List, Union

from sqlalchemy.ext.asyncio import AsyncSession

from newsletter.constants.content_status import ContentStatus
from newsletter.models.content_model import Content, Subscription, Subscriber
from newsletter.repositories.base_repository import AsyncBaseRepository


class ContentRepository(AsyncBaseRepository[Content]):
    def __init__(self):
        super().__init__(Content)

    async def get_content(self, db: AsyncSession, content_id: uuid.UUID) -> Optional[Content]:
        return await self.get(db, content_id)

    async def set_content_status(
            self,
            db: AsyncSession,
            content_id: uuid.UUID,
            status: Union[ContentStatus, str]
    ) -> bool:
        value = status.value if isinstance(status, ContentStatus) else status
        count = await self.bulk_update(db, condition={"id": content_id}, values={"status": value})
        return count > 0


class SubscriptionRepository(AsyncBaseRepository[Subscription]):
    def __init__(self):
        super().__init__(Subscription)

    async def list_active_subscriptions(
            self,
            db: AsyncSession,
            topic_id: uuid.UUID
    ) -> List[Subscription]:
        """
        Active subscriptions of a topic, oldest first.
        """
        return await self.get_by_condition(
            db,
            {"topic_id": topic_id, "is_active": True},
            order_by=Subscription.subscribed_at.asc()
        )


class SubscriberRepository(AsyncBaseRepository[Subscriber]):
    def __init__(self):
        super().__init__(Subscriber)

    async def get_subscriber(self, db: AsyncSession, subscriber_id: uuid.UUID) -> Optional[Subscriber]:
        return await self.get(db, subscriber_id)
