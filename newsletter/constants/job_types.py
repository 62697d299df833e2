from enum import Enum


class JobTypes(Enum):
    """Kinds of scheduled job rows"""
    send_newsletter = "send_newsletter"


class TaskTypes(Enum):
    """Task types carried on the durable queue"""
    send_newsletter = "send_newsletter"


class QueueLane(Enum):
    critical = "critical"
    default = "default"
    low = "low"
