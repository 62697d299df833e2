from newsletter.repositories import (
    JobRepository,
    DeliveryRepository,
    ContentRepository,
    TaskRepository,
)
from newsletter.services.dispatch_service import DispatchService

service = DispatchService(
    JobRepository(),
    DeliveryRepository(),
    ContentRepository(),
    TaskRepository(),
)


def get_service() -> DispatchService:
    return service
