from newsletter.repositories.content_repository import (
    ContentRepository,
    SubscriptionRepository,
    SubscriberRepository,
)
from newsletter.repositories.delivery_repository import DeliveryRepository
from newsletter.repositories.job_repository import JobRepository
from newsletter.repositories.task_repository import TaskRepository

__all__ = [
    'ContentRepository',
    'SubscriptionRepository',
    'SubscriberRepository',
    'DeliveryRepository',
    'JobRepository',
    'TaskRepository',
]
