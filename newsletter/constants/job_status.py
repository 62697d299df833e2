from enum import Enum


class JobStatus(Enum):
    pending = "pending"
    enqueued = "enqueued"
    completed = "completed"
    failed = "failed"
