import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Uuid
from newsletter.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(Base):
    __abstract__ = True

    # Primary key
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )
