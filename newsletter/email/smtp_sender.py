"""
SMTP transport built on aiosmtplib.
"""
import asyncio
from email.message import EmailMessage as MIMEMessage
from email.utils import formataddr
from typing import Optional

import aiosmtplib

from newsletter.core.exceptions import SendError
from newsletter.core.logger import debug, error
from newsletter.core.setup_logger import worker_logger
from newsletter.email.base import EmailSender, EmailMessage


class SMTPEmailSender(EmailSender):
    """
    Opens one SMTP connection per send.

    TLS modes:
    - use_tls=True: implicit TLS (typically port 465)
    - start_tls=True: plain connection upgraded with STARTTLS (typically port 587)
    """

    def __init__(
            self,
            host: str,
            port: int,
            from_address: str,
            from_name: str = "",
            username: Optional[str] = None,
            password: Optional[str] = None,
            use_tls: bool = False,
            start_tls: bool = True,
            timeout: float = 30.0
    ):
        if use_tls and start_tls:
            raise ValueError("use_tls and start_tls are mutually exclusive")
        self.host = host
        self.port = port
        self.from_address = from_address
        self.from_name = from_name
        self.username = username or None
        self.password = password or None
        self.use_tls = use_tls
        self.start_tls = start_tls
        self.timeout = timeout

    def build_message(self, message: EmailMessage) -> MIMEMessage:
        """
        multipart/alternative when both bodies are present,
        otherwise a single html or plain text part.
        """
        mime = MIMEMessage()
        mime["From"] = formataddr((self.from_name, self.from_address))
        mime["To"] = message.to
        mime["Subject"] = message.subject

        if message.html_body and message.text_body:
            mime.set_content(message.text_body)
            mime.add_alternative(message.html_body, subtype="html")
        elif message.html_body:
            mime.set_content(message.html_body, subtype="html")
        else:
            mime.set_content(message.text_body)
        return mime

    async def send(self, message: EmailMessage) -> None:
        mime = self.build_message(message)
        try:
            await aiosmtplib.send(
                mime,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.use_tls,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, asyncio.TimeoutError, OSError) as e:
            error(worker_logger, "Failed to send email", context={
                "to": message.to,
                "subject": message.subject,
                "error": str(e),
                "error_type": type(e).__name__,
            })
            raise SendError(message.to, f"failed to send email to {message.to}: {e}") from e

        debug(worker_logger, "Email sent via SMTP", context={
            "to": message.to,
            "subject": message.subject,
        })
