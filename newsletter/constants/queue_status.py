from enum import Enum


class TaskStatus(Enum):
    pending = "pending"
    active = "active"
    retry = "retry"
    completed = "completed"
    archived = "archived"
