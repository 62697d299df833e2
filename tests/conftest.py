"""Shared fixtures: a throwaway SQLite database plus in-memory queue and transport."""
import asyncio
import os
import tempfile
import uuid
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

# component loggers write files at import time
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "newsletter-test-logs"))

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

import newsletter.models  # noqa: F401
from newsletter.core.exceptions import EnqueueError, SendError
from newsletter.db.database import Base, create_session_factory
from newsletter.email.base import EmailSender, EmailMessage
from newsletter.models import Topic, Subscriber, Subscription, Content, ScheduledJob
from newsletter.queue.base import Queue, TaskInfo


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'newsletter.db'}", poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


def utc(minutes: int = 0) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


async def seed_content(
        session_factory,
        emails: List[str] = ("a@example.com", "b@example.com", "c@example.com"),
        inactive_emails: List[str] = (),
        status: str = "scheduled",
        send_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """A topic, its subscribers and one content item; returns the ids."""
    async with session_factory() as db:
        topic = Topic(name="Weekly digest")
        db.add(topic)
        await db.flush()

        subscriber_ids = {}
        for email in list(emails) + list(inactive_emails):
            subscriber = Subscriber(email=email, name=email.split("@")[0])
            db.add(subscriber)
            await db.flush()
            db.add(Subscription(
                subscriber_id=subscriber.id,
                topic_id=topic.id,
                is_active=email not in inactive_emails,
            ))
            subscriber_ids[email] = subscriber.id

        content = Content(
            topic_id=topic.id,
            subject="This week",
            body="<p>Hello subscribers</p>",
            send_at=send_at or utc(-5),
            status=status,
        )
        db.add(content)
        await db.commit()
        return {"topic_id": topic.id, "content_id": content.id, "subscriber_ids": subscriber_ids}


async def seed_job(
        session_factory,
        content_id: Optional[uuid.UUID] = None,
        scheduled_at: Optional[datetime] = None,
        status: str = "pending",
        job_type: str = "send_newsletter",
        attempts: int = 0,
        max_attempts: int = 3,
) -> uuid.UUID:
    async with session_factory() as db:
        job = ScheduledJob(
            content_id=content_id or uuid.uuid4(),
            job_type=job_type,
            status=status,
            scheduled_at=scheduled_at or utc(-1),
            attempts=attempts,
            max_attempts=max_attempts,
        )
        db.add(job)
        await db.commit()
        return job.id


class DummyQueue(Queue):
    """Records enqueued messages; refuses the job ids in fail_for."""

    def __init__(self, fail_for=()):
        self.fail_for = {str(job_id) for job_id in fail_for}
        self.enqueued: List[Dict[str, Any]] = []
        self.handlers = {}

    async def enqueue(self, task_type, payload, *, lane="default", max_retry=None, process_at=None):
        if payload.get("job_id") in self.fail_for:
            raise EnqueueError("queue unreachable")
        self.enqueued.append({"task_type": task_type, "payload": payload, "lane": lane})
        return TaskInfo(id=str(uuid.uuid4()), queue=lane)

    def register_handler(self, task_type, handler):
        self.handlers[task_type] = handler

    async def start(self):
        return None

    async def shutdown(self, timeout=None):
        return None


class DummySender(EmailSender):
    """Fails for the addresses in fail_for; tracks sends and peak concurrency."""

    def __init__(self, fail_for=(), delay: float = 0.0):
        self.fail_for = set(fail_for)
        self.delay = delay
        self.sent: List[EmailMessage] = []
        self.attempts: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, message: EmailMessage) -> None:
        self.attempts.append(message.to)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if message.to in self.fail_for:
                raise SendError(message.to, f"mailbox unavailable: {message.to}")
            self.sent.append(message)
        finally:
            self.in_flight -= 1


@pytest.fixture
def dummy_queue():
    return DummyQueue()


@pytest.fixture
def dummy_sender():
    return DummySender()
