"""
Error taxonomy for the dispatch pipeline.

Only TaskError (and subclasses) crosses the queue boundary; the rest are
absorbed by the component that sees them and recorded on the Job or Delivery.
"""
from typing import Optional


class NewsletterError(Exception):
    """Base class for dispatch pipeline errors."""


class EnqueueError(NewsletterError):
    """The queue did not durably accept a message."""


class UnknownJobTypeError(EnqueueError):
    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"unknown job type: {job_type}")


class TaskError(NewsletterError):
    """Failure that aborts a whole queued task; the queue decides on retry."""


class PayloadError(TaskError):
    """Task payload could not be decoded."""


class ContentNotFoundError(TaskError):
    def __init__(self, content_id: str, reason: Optional[str] = None):
        self.content_id = content_id
        message = f"content not found: {content_id}"
        if reason:
            message = f"failed to fetch content {content_id}: {reason}"
        super().__init__(message)


class HandlerNotFoundError(TaskError):
    def __init__(self, task_type: str, available: Optional[list] = None):
        self.task_type = task_type
        available_types = ", ".join(available or [])
        super().__init__(
            f"No handler registered for task_type: '{task_type}'. "
            f"Available types: {available_types}"
        )


class SendError(NewsletterError):
    """A single recipient send failed."""

    def __init__(self, recipient: str, message: str):
        self.recipient = recipient
        super().__init__(message)
