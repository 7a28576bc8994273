"""
QuestLink — NotificationDispatcher: post-submission emails.

Runs after the response has been committed.  A studio notification is
always attempted; a confirmation goes to the client when an email address is
known.  Each send is bounded by the ``RetryPolicy`` (its own timeout, initial
attempt plus retries, linear backoff).  A send that timed out is not
repeated, since the transport may still deliver it.  Every failure is logged
and swallowed: the submission has already succeeded and nothing here can change
that.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from html import escape
from typing import Any, Callable, Mapping

import structlog

from app.config import Settings
from app.models.types import utcnow
from app.schemas.questionnaire import RESERVED_ANSWER_KEYS
from app.utils.mail import MailMessage, MailTransport
from app.utils.retry import RetryPolicy

logger = structlog.get_logger("questlink.notification_service")


def _answer_lines(
    questionnaire: Mapping[str, Any],
    answers: Mapping[str, Any],
) -> list[tuple[str, str]]:
    """(label, value) pairs in answer order, reserved contact keys dropped."""
    labels = {
        f.get("key"): f.get("label")
        for f in questionnaire.get("fields") or []
        if isinstance(f, dict)
    }
    lines = []
    for key, value in answers.items():
        if key in RESERVED_ANSWER_KEYS:
            continue
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        lines.append((str(labels.get(key) or key), "" if value is None else str(value)))
    return lines


class NotificationDispatcher:
    """Builds and sends submission emails as tracked background tasks."""

    def __init__(
        self,
        settings: Settings,
        transport: MailTransport,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._retry = retry_policy or RetryPolicy(
            max_retries=settings.NOTIFY_MAX_RETRIES,
            backoff_base=settings.NOTIFY_BACKOFF_BASE_SECONDS,
            timeout=settings.NOTIFY_SEND_TIMEOUT_SECONDS,
            retry_timeouts=False,
        )
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ── Scheduling ───────────────────────────────────────────────────────────

    def schedule(
        self,
        questionnaire: Mapping[str, Any],
        answers: Mapping[str, Any],
        client_name: str,
        client_email: str | None,
    ) -> asyncio.Task:
        """Start ``notify`` without awaiting it.

        The task is held in ``self._tasks`` until it finishes so it is not
        garbage-collected mid-flight and can be awaited by ``drain``.
        """
        task = asyncio.create_task(
            self.notify(questionnaire, answers, client_name, client_email),
            name=f"notify-{questionnaire.get('id')}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight notifications (shutdown, tests)."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("notification_drain_timeout", remaining=len(not_done))

    # ── Sending ──────────────────────────────────────────────────────────────

    async def notify(
        self,
        questionnaire: Mapping[str, Any],
        answers: Mapping[str, Any],
        client_name: str,
        client_email: str | None,
    ) -> dict[str, bool | None]:
        """Send the studio notification and, if possible, the client
        confirmation.  Returns which sends succeeded (``None`` = not sent).
        """
        outcome: dict[str, bool | None] = {"studio": None, "client": None}

        try:
            studio_message = self.build_studio_message(
                questionnaire, answers, client_name, client_email
            )
        except Exception:
            logger.exception("notification_build_failed", kind="studio")
            studio_message = None
        if studio_message is not None:
            outcome["studio"] = await self._send(studio_message, kind="studio")

        if client_email:
            try:
                client_message = self.build_client_message(
                    questionnaire, client_name, client_email
                )
            except Exception:
                logger.exception("notification_build_failed", kind="client")
                client_message = None
            if client_message is not None:
                outcome["client"] = await self._send(client_message, kind="client")

        return outcome

    async def _send(self, message: MailMessage, kind: str) -> bool:
        log = logger.bind(kind=kind, to=message.to)
        try:
            await self._retry.run(self._transport.send, message)
        except Exception as exc:
            log.error(
                "notification_send_failed",
                attempts=self._retry.max_attempts,
                error=repr(exc),
            )
            return False
        log.info("notification_sent")
        return True

    # ── Message construction ─────────────────────────────────────────────────

    def build_studio_message(
        self,
        questionnaire: Mapping[str, Any],
        answers: Mapping[str, Any],
        client_name: str,
        client_email: str | None,
    ) -> MailMessage:
        title = questionnaire.get("title") or "Questionnaire"
        submitted = self._clock().strftime("%d.%m.%Y, %H:%M:%S")
        lines = _answer_lines(questionnaire, answers)
        email_display = client_email or "Not provided"

        answers_html = "".join(
            f"<li><strong>{escape(label)}:</strong> {escape(value)}</li>"
            for label, value in lines
        )
        answers_text = "\n".join(f"- {label}: {value}" for label, value in lines)
        footer = f"This questionnaire was submitted via the {self._settings.STUDIO_NAME} CRM system."

        html = (
            "<h2>New Questionnaire Response</h2>"
            f"<p><strong>Client:</strong> {escape(client_name)}</p>"
            f"<p><strong>Email:</strong> {escape(email_display)}</p>"
            f"<p><strong>Questionnaire:</strong> {escape(title)}</p>"
            f"<p><strong>Submitted:</strong> {submitted}</p>"
            f"<h3>Responses:</h3><ul>{answers_html}</ul>"
            f"<p><em>{escape(footer)}</em></p>"
        )
        text = (
            "New Questionnaire Response\n\n"
            f"Client: {client_name}\n"
            f"Email: {email_display}\n"
            f"Questionnaire: {title}\n"
            f"Submitted: {submitted}\n\n"
            f"Responses:\n{answers_text}\n\n"
            f"{footer}"
        )

        recipient = questionnaire.get("notify_email") or self._settings.STUDIO_NOTIFY_EMAIL
        return MailMessage(
            sender=self._settings.EMAIL_FROM,
            to=[recipient],
            subject=f"New Questionnaire Response: {client_name}",
            html=html,
            text=text,
            tags={"kind": "studio"},
        )

    def build_client_message(
        self,
        questionnaire: Mapping[str, Any],
        client_name: str,
        client_email: str,
    ) -> MailMessage:
        studio = self._settings.STUDIO_NAME
        html = (
            "<h2>Thank you for your response!</h2>"
            f"<p>Dear {escape(client_name)},</p>"
            "<p>Thank you for completing our questionnaire. We have received your "
            "responses and will review them carefully.</p>"
            "<p>We will be in touch soon to discuss your perfect photoshoot experience.</p>"
            f"<p>Best regards,<br>The {escape(studio)} Team</p>"
            "<p><em>This is an automated confirmation email.</em></p>"
        )
        text = (
            "Thank you for your response!\n\n"
            f"Dear {client_name},\n\n"
            "Thank you for completing our questionnaire. We have received your "
            "responses and will review them carefully.\n\n"
            "We will be in touch soon to discuss your perfect photoshoot experience.\n\n"
            f"Best regards,\nThe {studio} Team\n\n"
            "This is an automated confirmation email."
        )
        return MailMessage(
            sender=self._settings.EMAIL_FROM,
            to=[client_email],
            subject=f"Thank you for your questionnaire response - {studio}",
            html=html,
            text=text,
            tags={"kind": "client"},
        )
