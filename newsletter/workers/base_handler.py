"""
Base class for queue task handlers
"""

from abc import ABC, abstractmethod
from typing import Any

from newsletter.core.setup_logger import worker_logger
from newsletter.queue.base import Task


class BaseTaskHandler(ABC):
    """
    Base class for all task handlers
    A handler may be invoked more than once for the same message
    """

    def __init__(self):
        self.logger = worker_logger

    @abstractmethod
    async def execute(self, task: Task) -> Any:
        """
        Execute one delivered task

        Args:
            task: Delivered message with its decoded payload

        Raises:
            TaskError: the whole task failed; the queue decides on retry
        """
        pass

    @property
    @abstractmethod
    def task_type(self) -> str:
        """Return the task type this handler processes"""
        pass
