from sqlalchemy.sql.schema import Column, ForeignKey
from sqlalchemy.sql.sqltypes import String, DateTime, Integer, Text, Uuid

from newsletter.models.base_model import BaseModel, utcnow


class ScheduledJob(BaseModel):
    """A due unit of dispatch work: send one content item at scheduled_at."""
    __tablename__ = "job_scheduler"

    content_id = Column(Uuid, ForeignKey("contents.id"), nullable=False, index=True)
    job_type = Column(String(100), nullable=False, default="send_newsletter")

    # Job status and scheduling
    status = Column(String(20), nullable=False, default="pending", index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False,
                          default=utcnow, index=True)

    # Retry bookkeeping
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    error_message = Column(Text, nullable=True)
