"""
Transport capability: one outbound email to one recipient.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class EmailMessage:
    to: str
    subject: str
    html_body: str = ""
    text_body: str = ""


class EmailSender(ABC):
    """
    Send one message; raise SendError on any failure.
    Implementations are chosen once at start-up and shared by all sends.
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
