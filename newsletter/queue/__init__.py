from newsletter.queue.base import Queue, Task, TaskInfo, HandlerFunc
from newsletter.queue.postgres_queue import PostgresQueue

__all__ = [
    'Queue',
    'Task',
    'TaskInfo',
    'HandlerFunc',
    'PostgresQueue',
]
