import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class DeliveryResponse(BaseModel):
    """Schema for one recipient's delivery record."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content_id: uuid.UUID
    subscriber_id: uuid.UUID
    email: str
    status: str
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime


class DeliverySummary(BaseModel):
    content_id: uuid.UUID
    total: int
    pending: int
    sent: int
    failed: int
    bounced: int
