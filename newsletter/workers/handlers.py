"""
Task Handler Registry
Maps task_type to handler instances; bind_handlers hands them to a queue,
which does the per-task lookup
"""

from typing import Dict, List

from newsletter.core.logger import info
from newsletter.core.setup_logger import worker_logger
from newsletter.queue.base import Queue
from newsletter.workers.base_handler import BaseTaskHandler

# Handler Registry - maps task_type string to handler instance
HANDLERS: Dict[str, BaseTaskHandler] = {}


def register_handler(handler: BaseTaskHandler) -> None:
    """
    Register a handler instance (must inherit from BaseTaskHandler)
    """
    if not isinstance(handler, BaseTaskHandler):
        raise TypeError("Handler must inherit from BaseTaskHandler")

    task_type = handler.task_type
    info(worker_logger, f"Registering handler for task_type: {task_type}")
    HANDLERS[task_type] = handler


def list_handlers() -> List[str]:
    """Get list of all registered task types"""
    return list(HANDLERS.keys())


def bind_handlers(queue: Queue) -> None:
    """Bind every registered handler to the queue consumer."""
    for task_type, handler in HANDLERS.items():
        queue.register_handler(task_type, handler.execute)
