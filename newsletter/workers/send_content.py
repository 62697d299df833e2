"""
Send newsletter handler: deliver one content item to every active
subscriber of its topic and track each recipient's outcome.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from newsletter.constants.content_status import ContentStatus
from newsletter.constants.delivery_status import DeliveryStatus
from newsletter.constants.job_status import JobStatus
from newsletter.constants.job_types import TaskTypes
from newsletter.core.exceptions import ContentNotFoundError, TaskError, SendError
from newsletter.core.logger import info, debug, warning, error
from newsletter.email.base import EmailSender, EmailMessage
from newsletter.queue.base import Task
from newsletter.repositories.content_repository import (
    ContentRepository,
    SubscriptionRepository,
    SubscriberRepository,
)
from newsletter.repositories.delivery_repository import DeliveryRepository
from newsletter.repositories.job_repository import JobRepository
from newsletter.schemas.payloads import SendNewsletterPayload
from newsletter.workers.base_handler import BaseTaskHandler

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class Recipient:
    subscriber_id: uuid.UUID
    email: str


@dataclass
class DispatchSummary:
    content_id: str
    job_id: str
    recipients: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class SendContentHandler(BaseTaskHandler):
    """
    Handler for send_newsletter tasks.

    Task-level failures (bad payload, content or subscriptions not loadable)
    mark the job failed and raise to the queue. Recipient-level failures are
    recorded on that recipient's Delivery and never raised.

    Redelivery is safe: a recipient whose Delivery is already sent is skipped,
    and a pending or failed Delivery is reused rather than duplicated.
    """

    def __init__(
            self,
            session_factory: async_sessionmaker,
            sender: EmailSender,
            fanout_concurrency: int = 20,
            send_timeout: float = 30.0,
            content_repository: Optional[ContentRepository] = None,
            subscription_repository: Optional[SubscriptionRepository] = None,
            subscriber_repository: Optional[SubscriberRepository] = None,
            delivery_repository: Optional[DeliveryRepository] = None,
            job_repository: Optional[JobRepository] = None,
    ):
        super().__init__()
        if fanout_concurrency < 1:
            raise ValueError("fanout_concurrency must be at least 1")
        self.session_factory = session_factory
        self.sender = sender
        self.fanout_concurrency = fanout_concurrency
        self.send_timeout = send_timeout
        self.content_repository = content_repository or ContentRepository()
        self.subscription_repository = subscription_repository or SubscriptionRepository()
        self.subscriber_repository = subscriber_repository or SubscriberRepository()
        self.delivery_repository = delivery_repository or DeliveryRepository()
        self.job_repository = job_repository or JobRepository()

    @property
    def task_type(self) -> str:
        return TaskTypes.send_newsletter.value

    async def execute(self, task: Task) -> DispatchSummary:
        payload = SendNewsletterPayload.decode(task.payload)
        content_id, job_id = payload.content_id, payload.job_id
        summary = DispatchSummary(content_id=str(content_id), job_id=str(job_id))

        info(self.logger, "Processing send content task", context={
            "task_id": task.id,
            "content_id": content_id,
            "job_id": job_id,
            "retried": task.retried,
        })

        content = await self._load_content(content_id, job_id)

        if content.status == ContentStatus.cancelled.value:
            warning(self.logger, "Content was cancelled, nothing to send", context={
                "content_id": content_id,
                "job_id": job_id,
            })
            await self._set_job_completed(job_id)
            return summary

        recipients = await self._resolve_recipients(content.topic_id, content_id, job_id)
        summary.recipients = len(recipients)

        message = {
            "subject": content.subject,
            "html_body": content.body,
            "text_body": content.body,
        }
        outcomes = await self._send_to_all(content_id, message, recipients)
        summary.sent = outcomes.count(SENT)
        summary.failed = outcomes.count(FAILED)
        summary.skipped = outcomes.count(SKIPPED)

        await self._set_content_sent(content_id)
        await self._set_job_completed(job_id)

        info(self.logger, "Send content task completed", context={
            "content_id": content_id,
            "job_id": job_id,
            "recipients": summary.recipients,
            "sent": summary.sent,
            "failed": summary.failed,
            "skipped": summary.skipped,
        })
        return summary

    async def _load_content(self, content_id: uuid.UUID, job_id: uuid.UUID):
        try:
            async with self.session_factory() as db:
                content = await self.content_repository.get_content(db, content_id)
        except SQLAlchemyError as e:
            error(self.logger, "Failed to fetch content", context={
                "content_id": content_id,
                "error": str(e),
            })
            await self._fail_job(job_id, f"Failed to fetch content: {e}")
            raise ContentNotFoundError(str(content_id), str(e)) from e

        if content is None:
            error(self.logger, "Content not found", context={"content_id": content_id})
            await self._fail_job(job_id, f"Failed to fetch content: content not found: {content_id}")
            raise ContentNotFoundError(str(content_id))

        return content

    async def _resolve_recipients(
            self,
            topic_id: uuid.UUID,
            content_id: uuid.UUID,
            job_id: uuid.UUID
    ) -> List[Recipient]:
        """
        Active subscriptions of the topic resolved to addresses.
        A subscriber that cannot be resolved is skipped.
        """
        try:
            async with self.session_factory() as db:
                subscriptions = await self.subscription_repository.list_active_subscriptions(db, topic_id)
                subscriber_ids = [subscription.subscriber_id for subscription in subscriptions]
        except SQLAlchemyError as e:
            error(self.logger, "Failed to fetch subscriptions", context={
                "content_id": content_id,
                "topic_id": topic_id,
                "error": str(e),
            })
            await self._fail_job(job_id, f"Failed to fetch subscriptions: {e}")
            raise TaskError(f"failed to fetch subscriptions for topic {topic_id}: {e}") from e

        recipients = []
        for subscriber_id in subscriber_ids:
            recipient = await self._resolve_subscriber(subscriber_id)
            if recipient is not None:
                recipients.append(recipient)
        return recipients

    async def _resolve_subscriber(self, subscriber_id: uuid.UUID) -> Optional[Recipient]:
        # own session per lookup: a failed query must not poison the others
        try:
            async with self.session_factory() as db:
                subscriber = await self.subscriber_repository.get_subscriber(db, subscriber_id)
                if subscriber is None:
                    warning(self.logger, "Subscriber not found", context={"subscriber_id": subscriber_id})
                    return None
                if not subscriber.is_active:
                    debug(self.logger, "Subscriber inactive, skipped", context={"subscriber_id": subscriber_id})
                    return None
                return Recipient(subscriber_id=subscriber.id, email=subscriber.email)
        except SQLAlchemyError as e:
            warning(self.logger, "Failed to fetch subscriber", context={
                "subscriber_id": subscriber_id,
                "error": str(e),
            })
            return None

    async def _send_to_all(self, content_id: uuid.UUID, message: dict, recipients: List[Recipient]) -> List[str]:
        """
        Send to every recipient with at most fanout_concurrency sends in flight,
        and wait for all of them.
        """
        semaphore = asyncio.Semaphore(self.fanout_concurrency)

        info(self.logger, "Starting parallel email sending", context={
            "content_id": content_id,
            "total_emails": len(recipients),
            "max_concurrency": self.fanout_concurrency,
        })

        async def bounded(recipient: Recipient) -> str:
            async with semaphore:
                return await self._deliver(content_id, message, recipient)

        results = await asyncio.gather(*(bounded(r) for r in recipients), return_exceptions=True)

        outcomes = []
        for recipient, result in zip(recipients, results):
            if isinstance(result, BaseException):
                error(self.logger, "Unexpected error in recipient send", context={
                    "content_id": content_id,
                    "recipient": recipient.email,
                    "error": str(result),
                    "error_type": type(result).__name__,
                })
                outcomes.append(FAILED)
            else:
                outcomes.append(result)

        info(self.logger, "Parallel email sending completed", context={
            "content_id": content_id,
            "total_emails": len(recipients),
        })
        return outcomes

    async def _deliver(self, content_id: uuid.UUID, message: dict, recipient: Recipient) -> str:
        """One recipient: pending Delivery, send, one terminal update."""
        start = time.monotonic()
        delivery_id = await self._prepare_delivery(content_id, recipient)
        if delivery_id is None:
            return SKIPPED

        send_error = None
        try:
            await asyncio.wait_for(
                self.sender.send(EmailMessage(to=recipient.email, **message)),
                timeout=self.send_timeout
            )
        except asyncio.TimeoutError:
            send_error = f"send to {recipient.email} timed out after {self.send_timeout}s"
        except SendError as e:
            send_error = str(e)
        except Exception as e:
            # third-party transports can raise anything; the Delivery still needs its terminal status
            send_error = str(e) or type(e).__name__

        context = {
            "content_id": content_id,
            "recipient": recipient.email,
            "delivery_id": delivery_id,
            "send_duration": round(time.monotonic() - start, 3),
        }

        if send_error is not None:
            await self._update_delivery(delivery_id, DeliveryStatus.failed, error_message=send_error)
            error(self.logger, "Failed to send email", context={**context, "error": send_error})
            return FAILED

        await self._update_delivery(delivery_id, DeliveryStatus.sent, sent_at=datetime.now(timezone.utc))
        info(self.logger, "Email sent successfully", context=context)
        return SENT

    async def _prepare_delivery(self, content_id: uuid.UUID, recipient: Recipient) -> Optional[uuid.UUID]:
        """
        Delivery row to send against, or None when this recipient must not be sent to:
        already sent, or the row could not be written.
        """
        try:
            async with self.session_factory() as db:
                existing = await self.delivery_repository.get_by_content_and_subscriber(
                    db, content_id, recipient.subscriber_id
                )
                if existing is not None:
                    if existing.status == DeliveryStatus.sent.value:
                        debug(self.logger, "Recipient already sent, skipped", context={
                            "content_id": content_id,
                            "delivery_id": existing.id,
                        })
                        return None
                    await self.delivery_repository.update_delivery_status(
                        db, existing.id, DeliveryStatus.pending
                    )
                    await db.commit()
                    return existing.id

                delivery = await self.delivery_repository.create_delivery(
                    db,
                    content_id=content_id,
                    subscriber_id=recipient.subscriber_id,
                    email=recipient.email,
                    status=DeliveryStatus.pending,
                )
                await db.commit()
                return delivery.id
        except IntegrityError:
            # a concurrent delivery of the same task owns this recipient
            warning(self.logger, "Delivery already exists for recipient, skipped", context={
                "content_id": content_id,
                "subscriber_id": recipient.subscriber_id,
            })
            return None
        except SQLAlchemyError as e:
            error(self.logger, "Failed to create delivery record", context={
                "content_id": content_id,
                "subscriber_email": recipient.email,
                "error": str(e),
            })
            return None

    async def _update_delivery(self, delivery_id: uuid.UUID, status: DeliveryStatus, sent_at=None, error_message=None):
        try:
            async with self.session_factory() as db:
                await self.delivery_repository.update_delivery_status(
                    db, delivery_id, status, sent_at=sent_at, error_message=error_message
                )
                await db.commit()
        except SQLAlchemyError as e:
            error(self.logger, f"Failed to update delivery status to {status.value}", context={
                "delivery_id": delivery_id,
                "error": str(e),
            })

    async def _set_content_sent(self, content_id: uuid.UUID):
        try:
            async with self.session_factory() as db:
                await self.content_repository.set_content_status(db, content_id, ContentStatus.sent)
                await db.commit()
        except SQLAlchemyError as e:
            error(self.logger, "Failed to update content status", context={
                "content_id": content_id,
                "error": str(e),
            })

    async def _set_job_completed(self, job_id: uuid.UUID):
        try:
            async with self.session_factory() as db:
                updated = await self.job_repository.set_status(db, job_id, JobStatus.completed)
                await db.commit()
        except SQLAlchemyError as e:
            error(self.logger, "Failed to update job status", context={
                "job_id": job_id,
                "error": str(e),
            })
            return

        if not updated:
            warning(self.logger, "Job not found when marking completed", context={"job_id": job_id})

    async def _fail_job(self, job_id: uuid.UUID, message: str):
        try:
            async with self.session_factory() as db:
                await self.job_repository.mark_failed(db, job_id, message)
                await db.commit()
        except SQLAlchemyError as e:
            error(self.logger, "Failed to mark job failed", context={
                "job_id": job_id,
                "error": str(e),
            })
