from sqlalchemy.sql.schema import Column, ForeignKey, UniqueConstraint
from sqlalchemy.sql.sqltypes import String, DateTime, Text, Uuid

from newsletter.models.base_model import BaseModel


class Delivery(BaseModel):
    """One recipient's send outcome for one content item."""
    __tablename__ = "deliveries"
    # redelivered tasks reuse the row instead of sending twice
    __table_args__ = (
        UniqueConstraint("content_id", "subscriber_id", name="uq_delivery_content_subscriber"),
    )

    content_id = Column(Uuid, ForeignKey("contents.id"), nullable=False, index=True)
    subscriber_id = Column(Uuid, ForeignKey("subscribers.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
