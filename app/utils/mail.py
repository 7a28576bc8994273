"""Mail transports.

``MailTransport`` is the only contract the notification code relies on.
``LogMailTransport`` records messages instead of sending them (development
and tests); ``ResendMailTransport`` delivers through the Resend API.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol

import resend
import structlog

from app.config import Settings

logger = structlog.get_logger("questlink.mail")


@dataclass
class MailMessage:
    sender: str
    to: list[str]
    subject: str
    html: str
    text: str
    tags: dict[str, str] = field(default_factory=dict)


class MailTransport(Protocol):
    async def send(self, message: MailMessage) -> None: ...


class LogMailTransport:
    """Logs a summary of each message and keeps the most recent ones in
    memory; older messages are dropped once ``history`` is reached.
    """

    def __init__(self, history: int = 100) -> None:
        self.sent: deque[MailMessage] = deque(maxlen=history)

    async def send(self, message: MailMessage) -> None:
        self.sent.append(message)
        logger.info(
            "mail_logged",
            to=message.to,
            subject=message.subject,
            **message.tags,
        )


class ResendMailTransport:
    """Sends through the blocking Resend SDK in a worker thread.

    A caller-side timeout abandons the await, not the HTTP request, which
    may still be delivered.
    """

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def _send_sync(self, message: MailMessage) -> dict:
        resend.api_key = self._api_key
        params = {
            "from": message.sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        if message.tags:
            params["tags"] = [{"name": k, "value": v} for k, v in message.tags.items()]
        return resend.Emails.send(params)

    async def send(self, message: MailMessage) -> None:
        # The Resend SDK is blocking; keep it off the event loop.
        result = await asyncio.to_thread(self._send_sync, message)
        logger.info("mail_sent", to=message.to, subject=message.subject, id=result.get("id"))


def build_mail_transport(settings: Settings) -> MailTransport:
    if settings.EMAIL_TRANSPORT == "resend":
        if settings.RESEND_API_KEY:
            return ResendMailTransport(settings.RESEND_API_KEY)
        logger.warning("mail_transport_fallback", reason="RESEND_API_KEY not configured")
    return LogMailTransport()
