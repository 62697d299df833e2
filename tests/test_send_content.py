import asyncio
import uuid

import pytest
from sqlalchemy import text

from conftest import DummySender, seed_content, seed_job
from newsletter.core.exceptions import ContentNotFoundError, PayloadError, TaskError
from newsletter.email.base import EmailMessage, EmailSender
from newsletter.queue.base import Task
from newsletter.repositories import (
    ContentRepository,
    DeliveryRepository,
    JobRepository,
    SubscriberRepository,
    SubscriptionRepository,
)
from newsletter.workers.send_content import SendContentHandler


def make_task(content_id, job_id, retried=0):
    return Task(
        id=str(uuid.uuid4()),
        task_type="send_newsletter",
        payload={"content_id": str(content_id), "job_id": str(job_id)},
        retried=retried,
    )


async def snapshot(session_factory, content_id, job_id):
    async with session_factory() as db:
        content = await ContentRepository().get_content(db, content_id)
        job = await JobRepository().get(db, job_id)
        deliveries = await DeliveryRepository().list_by_content(db, content_id)
    return content, job, {d.email: d for d in deliveries}


@pytest.mark.asyncio
async def test_one_failing_recipient_does_not_affect_the_others(session_factory):
    seeded = await seed_content(session_factory)
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")
    sender = DummySender(fail_for={"b@example.com"})
    handler = SendContentHandler(session_factory, sender)

    summary = await handler.execute(make_task(seeded["content_id"], job_id))

    content, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert (summary.recipients, summary.sent, summary.failed) == (3, 2, 1)
    assert len(deliveries) == 3
    assert deliveries["a@example.com"].status == "sent"
    assert deliveries["a@example.com"].sent_at is not None
    assert deliveries["c@example.com"].status == "sent"
    assert deliveries["b@example.com"].status == "failed"
    assert "mailbox unavailable" in deliveries["b@example.com"].error_message
    assert deliveries["b@example.com"].sent_at is None
    assert content.status == "sent"
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_message_uses_content_subject_and_body(session_factory, dummy_sender):
    seeded = await seed_content(session_factory, emails=["a@example.com"])
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")

    await SendContentHandler(session_factory, dummy_sender).execute(make_task(seeded["content_id"], job_id))

    message = dummy_sender.sent[0]
    assert message.to == "a@example.com"
    assert message.subject == "This week"
    assert message.html_body == "<p>Hello subscribers</p>"
    assert message.text_body == "<p>Hello subscribers</p>"


@pytest.mark.asyncio
async def test_missing_content_fails_the_job_and_the_task(session_factory, dummy_sender):
    missing_content = uuid.uuid4()
    job_id = await seed_job(session_factory, content_id=missing_content, status="enqueued")
    handler = SendContentHandler(session_factory, dummy_sender)

    with pytest.raises(ContentNotFoundError):
        await handler.execute(make_task(missing_content, job_id))

    _, job, deliveries = await snapshot(session_factory, missing_content, job_id)
    assert job.status == "failed"
    assert job.attempts == 1
    assert "content not found" in job.error_message
    assert deliveries == {}
    assert dummy_sender.attempts == []


@pytest.mark.asyncio
async def test_malformed_payload_is_a_task_level_error(session_factory, dummy_sender):
    handler = SendContentHandler(session_factory, dummy_sender)
    task = Task(id="t-1", task_type="send_newsletter", payload={"content_id": "not-a-uuid"})

    with pytest.raises(PayloadError):
        await handler.execute(task)


@pytest.mark.asyncio
async def test_only_active_subscribers_receive_the_content(session_factory, dummy_sender):
    seeded = await seed_content(session_factory, emails=["a@example.com"], inactive_emails=["left@example.com"])
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")

    summary = await SendContentHandler(session_factory, dummy_sender).execute(
        make_task(seeded["content_id"], job_id)
    )

    _, _, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert summary.recipients == 1
    assert list(deliveries) == ["a@example.com"]
    assert dummy_sender.attempts == ["a@example.com"]


@pytest.mark.asyncio
async def test_topic_without_subscribers_still_completes(session_factory, dummy_sender):
    seeded = await seed_content(session_factory, emails=[])
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")

    summary = await SendContentHandler(session_factory, dummy_sender).execute(
        make_task(seeded["content_id"], job_id)
    )

    content, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert summary.recipients == 0
    assert deliveries == {}
    assert content.status == "sent"
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_fan_out_never_exceeds_the_concurrency_cap(session_factory):
    emails = [f"reader{i}@example.com" for i in range(25)]
    seeded = await seed_content(session_factory, emails=emails)
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")
    sender = DummySender(delay=0.02)

    summary = await SendContentHandler(session_factory, sender, fanout_concurrency=4).execute(
        make_task(seeded["content_id"], job_id)
    )

    assert summary.sent == 25
    assert 1 <= sender.max_in_flight <= 4


@pytest.mark.asyncio
async def test_redelivered_task_does_not_duplicate_or_resend(session_factory):
    seeded = await seed_content(session_factory)
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")
    task = make_task(seeded["content_id"], job_id)

    first_sender = DummySender(fail_for={"b@example.com"})
    await SendContentHandler(session_factory, first_sender).execute(task)

    second_sender = DummySender()
    summary = await SendContentHandler(session_factory, second_sender).execute(task)

    _, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert second_sender.attempts == ["b@example.com"]
    assert (summary.sent, summary.skipped) == (1, 2)
    assert len(deliveries) == 3
    assert {d.status for d in deliveries.values()} == {"sent"}
    assert deliveries["b@example.com"].error_message is None
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_redelivery_completes_a_job_marked_failed(session_factory, dummy_sender):
    seeded = await seed_content(session_factory, emails=["a@example.com"])
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="failed", attempts=1)

    await SendContentHandler(session_factory, dummy_sender).execute(make_task(seeded["content_id"], job_id, retried=1))

    _, job, _ = await snapshot(session_factory, seeded["content_id"], job_id)
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_cancelled_content_is_not_sent(session_factory, dummy_sender):
    seeded = await seed_content(session_factory, status="cancelled")
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")

    summary = await SendContentHandler(session_factory, dummy_sender).execute(
        make_task(seeded["content_id"], job_id)
    )

    content, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert summary.recipients == 0
    assert dummy_sender.attempts == []
    assert deliveries == {}
    assert content.status == "cancelled"
    assert job.status == "completed"


class HangingSender(EmailSender):
    async def send(self, message: EmailMessage) -> None:
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_slow_transport_is_cut_off_by_the_send_timeout(session_factory):
    seeded = await seed_content(session_factory, emails=["a@example.com"])
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")

    summary = await SendContentHandler(session_factory, HangingSender(), send_timeout=0.05).execute(
        make_task(seeded["content_id"], job_id)
    )

    _, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert summary.failed == 1
    assert deliveries["a@example.com"].status == "failed"
    assert "timed out" in deliveries["a@example.com"].error_message
    assert job.status == "completed"


class ExplodingSender(EmailSender):
    async def send(self, message: EmailMessage) -> None:
        raise RuntimeError("transport bug")


@pytest.mark.asyncio
async def test_unexpected_transport_error_is_recorded_on_the_delivery(session_factory):
    seeded = await seed_content(session_factory, emails=["a@example.com"])
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")

    await SendContentHandler(session_factory, ExplodingSender()).execute(make_task(seeded["content_id"], job_id))

    _, _, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert deliveries["a@example.com"].status == "failed"
    assert deliveries["a@example.com"].error_message == "transport bug"


async def run_broken_query(db):
    await db.execute(text("SELECT * FROM no_such_table"))


class FlakySubscriberRepository(SubscriberRepository):
    """Lookups for the subscribers in broken_ids fail with a real database error."""

    def __init__(self, broken_ids):
        super().__init__()
        self.broken_ids = set(broken_ids)

    async def get_subscriber(self, db, subscriber_id):
        if subscriber_id in self.broken_ids:
            await run_broken_query(db)
        return await super().get_subscriber(db, subscriber_id)


@pytest.mark.asyncio
async def test_failed_subscriber_lookup_skips_only_that_subscriber(session_factory, dummy_sender):
    seeded = await seed_content(session_factory)
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")
    subscribers = FlakySubscriberRepository({seeded["subscriber_ids"]["a@example.com"]})
    handler = SendContentHandler(session_factory, dummy_sender, subscriber_repository=subscribers)

    summary = await handler.execute(make_task(seeded["content_id"], job_id))

    content, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert (summary.recipients, summary.sent) == (2, 2)
    assert sorted(dummy_sender.attempts) == ["b@example.com", "c@example.com"]
    assert sorted(deliveries) == ["b@example.com", "c@example.com"]
    assert content.status == "sent"
    assert job.status == "completed"


class BrokenSubscriptionRepository(SubscriptionRepository):
    async def list_active_subscriptions(self, db, topic_id):
        await run_broken_query(db)


@pytest.mark.asyncio
async def test_failed_subscription_load_fails_the_job_and_the_task(session_factory, dummy_sender):
    seeded = await seed_content(session_factory)
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")
    handler = SendContentHandler(
        session_factory, dummy_sender, subscription_repository=BrokenSubscriptionRepository()
    )

    with pytest.raises(TaskError):
        await handler.execute(make_task(seeded["content_id"], job_id))

    content, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert job.status == "failed"
    assert job.attempts == 1
    assert "Failed to fetch subscriptions" in job.error_message
    assert content.status == "scheduled"
    assert deliveries == {}
    assert dummy_sender.attempts == []


class FlakyDeliveryRepository(DeliveryRepository):
    """
    Delivery writes fail for the addresses in broken_creates (on insert)
    and broken_updates (on the terminal status update).
    """

    def __init__(self, broken_creates=(), broken_updates=()):
        super().__init__()
        self.broken_creates = set(broken_creates)
        self.broken_updates = set(broken_updates)
        self.ids_by_email = {}

    async def create_delivery(self, db, *, content_id, subscriber_id, email, status="pending"):
        if email in self.broken_creates:
            await run_broken_query(db)
        delivery = await super().create_delivery(
            db, content_id=content_id, subscriber_id=subscriber_id, email=email, status=status
        )
        self.ids_by_email[email] = delivery.id
        return delivery

    async def update_delivery_status(self, db, delivery_id, status, sent_at=None, error_message=None):
        broken_ids = {self.ids_by_email.get(email) for email in self.broken_updates}
        if delivery_id in broken_ids:
            await run_broken_query(db)
        return await super().update_delivery_status(
            db, delivery_id, status, sent_at=sent_at, error_message=error_message
        )


@pytest.mark.asyncio
async def test_failed_delivery_insert_skips_that_recipient_only(session_factory, dummy_sender):
    seeded = await seed_content(session_factory)
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")
    deliveries_repo = FlakyDeliveryRepository(broken_creates={"b@example.com"})
    handler = SendContentHandler(session_factory, dummy_sender, delivery_repository=deliveries_repo)

    summary = await handler.execute(make_task(seeded["content_id"], job_id))

    _, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert (summary.sent, summary.skipped) == (2, 1)
    assert sorted(dummy_sender.attempts) == ["a@example.com", "c@example.com"]
    assert sorted(deliveries) == ["a@example.com", "c@example.com"]
    assert {d.status for d in deliveries.values()} == {"sent"}
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_failed_delivery_status_update_is_logged_and_siblings_finish(session_factory, dummy_sender):
    seeded = await seed_content(session_factory)
    job_id = await seed_job(session_factory, content_id=seeded["content_id"], status="enqueued")
    deliveries_repo = FlakyDeliveryRepository(broken_updates={"b@example.com"})
    handler = SendContentHandler(session_factory, dummy_sender, delivery_repository=deliveries_repo)

    summary = await handler.execute(make_task(seeded["content_id"], job_id))

    _, job, deliveries = await snapshot(session_factory, seeded["content_id"], job_id)
    assert summary.sent == 3
    assert len(dummy_sender.sent) == 3
    assert deliveries["a@example.com"].status == "sent"
    assert deliveries["c@example.com"].status == "sent"
    assert deliveries["b@example.com"].status == "pending"
    assert job.status == "completed"
