from .job_schemas import JobResponse, JobStats
from .delivery_schemas import DeliveryResponse, DeliverySummary
from .payloads import SendNewsletterPayload

__all__ = [
    "JobResponse",
    "JobStats",
    "DeliveryResponse",
    "DeliverySummary",
    "SendNewsletterPayload",
]
