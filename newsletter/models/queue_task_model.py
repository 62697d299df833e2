from sqlalchemy.sql.schema import Column, Index
from sqlalchemy.sql.sqltypes import String, DateTime, Integer, Text

from newsletter.models.base_model import BaseModel, utcnow


class QueueTask(BaseModel):
    """A message on the durable queue."""
    __tablename__ = "queue_tasks"
    __table_args__ = (
        Index("ix_queue_tasks_fetch", "lane", "status", "process_at"),
    )

    task_type = Column(String(100), nullable=False, index=True)
    lane = Column(String(50), nullable=False, default="default")

    # JSON-encoded payload, decoded before the handler sees it
    payload = Column(Text, nullable=False)

    status = Column(String(20), nullable=False, default="pending")
    process_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)

    retried = Column(Integer, nullable=False, default=0)
    max_retry = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
