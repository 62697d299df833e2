import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class JobResponse(BaseModel):
    """Schema for job response."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content_id: uuid.UUID
    job_type: str
    status: str
    scheduled_at: datetime
    attempts: int
    max_attempts: int
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class JobStats(BaseModel):
    """Schema for job status counts."""
    pending_count: int
    enqueued_count: int
    completed_count: int
    failed_count: int
