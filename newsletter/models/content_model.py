from sqlalchemy.sql.schema import Column, ForeignKey, UniqueConstraint
from sqlalchemy.sql.sqltypes import String, DateTime, Text, Boolean, Uuid

from newsletter.models.base_model import BaseModel, utcnow


class Topic(BaseModel):
    __tablename__ = "topics"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)


class Subscriber(BaseModel):
    __tablename__ = "subscribers"

    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Subscription(BaseModel):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("subscriber_id", "topic_id", name="uq_subscription_subscriber_topic"),
    )

    subscriber_id = Column(Uuid, ForeignKey("subscribers.id"), nullable=False, index=True)
    topic_id = Column(Uuid, ForeignKey("topics.id"), nullable=False, index=True)
    subscribed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_active = Column(Boolean, nullable=False, default=True)


class Content(BaseModel):
    __tablename__ = "contents"

    topic_id = Column(Uuid, ForeignKey("topics.id"), nullable=False, index=True)
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    send_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="scheduled", index=True)
