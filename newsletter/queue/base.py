"""
Durable queue contract.

At-least-once delivery: a message can reach its handler more than once
(handler error retries, consumer crash recovery), so handlers must tolerate
being re-invoked with the same payload.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional


@dataclass
class Task:
    """A delivered message, as handed to a handler."""
    id: str
    task_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    lane: str = "default"
    retried: int = 0
    max_retry: int = 0


@dataclass
class TaskInfo:
    """Handle returned once a message is durably accepted."""
    id: str
    queue: str


HandlerFunc = Callable[[Task], Awaitable[Any]]


class Queue(ABC):

    @abstractmethod
    async def enqueue(
            self,
            task_type: str,
            payload: Dict[str, Any],
            *,
            lane: str = "default",
            max_retry: Optional[int] = None,
            process_at: Optional[datetime] = None
    ) -> TaskInfo:
        """
        Durably accept a message.

        Raises:
            EnqueueError: the message was not accepted
        """

    @abstractmethod
    def register_handler(self, task_type: str, handler: HandlerFunc) -> None:
        """Bind the handler invoked once per delivered message of task_type."""

    @abstractmethod
    async def start(self) -> None:
        """Start consuming in the background."""

    @abstractmethod
    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop taking new messages, give in-flight handlers until the deadline,
        then cancel what is left.
        """
