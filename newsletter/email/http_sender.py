"""
HTTP transport for the Brevo transactional email API.
"""
import asyncio
from typing import Optional, Dict, Any

import aiohttp

from newsletter.core.exceptions import SendError
from newsletter.core.logger import debug, error
from newsletter.core.setup_logger import worker_logger
from newsletter.email.base import EmailSender, EmailMessage


class HTTPEmailSender(EmailSender):
    """
    POSTs each message to {base_url}/v3/smtp/email.
    One aiohttp session is shared by every send and closed with close().
    """

    def __init__(
            self,
            api_key: str,
            from_address: str,
            from_name: str = "",
            base_url: str = "https://api.brevo.com",
            timeout: float = 30.0,
            session: Optional[aiohttp.ClientSession] = None
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v3/smtp/email"

    def build_body(self, message: EmailMessage) -> Dict[str, Any]:
        body = {
            "sender": {"name": self.from_name, "email": self.from_address},
            "to": [{"email": message.to}],
            "subject": message.subject,
        }
        if message.html_body:
            body["htmlContent"] = message.html_body
        if message.text_body:
            body["textContent"] = message.text_body
        return body

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def send(self, message: EmailMessage) -> None:
        headers = {
            "api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        session = self._get_session()
        try:
            async with session.post(self.endpoint, json=self.build_body(message), headers=headers) as resp:
                if resp.status < 200 or resp.status >= 300:
                    detail = await resp.text()
                    error(worker_logger, "Email API returned error status", context={
                        "to": message.to,
                        "status_code": resp.status,
                        "detail": detail[:500],
                    })
                    raise SendError(
                        message.to,
                        f"email API returned error status: {resp.status} {detail[:200]}".strip()
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error(worker_logger, "Failed to call email API", context={
                "to": message.to,
                "error": str(e),
                "error_type": type(e).__name__,
            })
            raise SendError(message.to, f"failed to send HTTP request: {e}") from e

        debug(worker_logger, "Email sent via HTTP API", context={
            "to": message.to,
            "subject": message.subject,
        })

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
