from newsletter.models.content_model import Topic, Subscriber, Subscription, Content
from newsletter.models.delivery_model import Delivery
from newsletter.models.jobs_model import ScheduledJob
from newsletter.models.queue_task_model import QueueTask

__all__ = [
    'Topic',
    'Subscriber',
    'Subscription',
    'Content',
    'Delivery',
    'ScheduledJob',
    'QueueTask',
]
