"""Mail transport.

``log`` only writes the message to the log (development); ``resend`` posts
it to the Resend HTTP API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from mercado_radar.config import Settings, get_settings

logger = logging.getLogger(__name__)

_RESEND_URL = "https://api.resend.com/emails"


@dataclass(slots=True)
class EmailMessage:
    to: str
    subject: str
    html: str


class EmailProvider:
    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.provider = settings.email_provider
        self.api_key = settings.resend_api_key
        self.sender = settings.email_sender

    async def send(self, message: EmailMessage) -> bool:
        """Send synchronously from the caller's point of view.

        Returns ``True`` on success; HTTP failures propagate.
        """
        if self.provider == "resend" and self.api_key:
            await self._send_resend(message)
        else:
            logger.info("Email (log) -> %s: %s (%d bytes)", message.to, message.subject, len(message.html))
        return True

    async def _send_resend(self, message: EmailMessage) -> None:
        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.post(_RESEND_URL, json=payload, headers=headers)
            response.raise_for_status()
        logger.info("Email sent to %s: %s", message.to, message.subject)
