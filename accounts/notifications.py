"""
Notification backends

Notifications are fire-and-forget: callers go through ``notify_safely``
so a delivery failure is logged and never fails the operation that
triggered it.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Optional, Tuple

from utils.logger import logger


class Notifier(ABC):
    """Abstract notification channel"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def notify(self, destination: str, message: str) -> None:
        pass


class LogNotifier(Notifier):
    """Development notifier: writes the message to the log"""

    def __init__(self, history_size: int = 100):
        # Most recent (destination, message) pairs only
        self.sent: Deque[Tuple[str, str]] = deque(maxlen=history_size)

    @property
    def name(self) -> str:
        return "log"

    async def notify(self, destination: str, message: str) -> None:
        self.sent.append((destination, message))
        logger.info(f"[NOTIFY] To: {destination}")
        logger.debug(f"[NOTIFY] Message: {message}")


class SendGridNotifier(Notifier):
    """Plain-text e-mail through SendGrid"""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        subject: str = "ExamCoach account update",
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.subject = subject

    @property
    def name(self) -> str:
        return "sendgrid"

    def _send(self, destination: str, message: str) -> int:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import Mail

        mail = Mail(
            from_email=self.from_email,
            to_emails=destination,
            subject=self.subject,
            plain_text_content=message,
        )
        response = SendGridAPIClient(self.api_key).send(mail)
        return response.status_code

    async def notify(self, destination: str, message: str) -> None:
        if not self.api_key:
            raise RuntimeError("SendGrid API key not configured")

        status = await asyncio.to_thread(self._send, destination, message)
        if status not in (200, 201, 202):
            raise RuntimeError(f"SendGrid error: {status}")
        logger.info(f"Notification e-mail sent: {self.subject}")


async def notify_safely(notifier: Optional[Notifier], destination: Optional[str], message: str) -> bool:
    """
    Deliver a notification without ever raising.

    Returns:
        True if the notifier reported success
    """
    if notifier is None or not destination:
        return False
    try:
        await notifier.notify(destination, message)
        return True
    except Exception as e:
        logger.error(f"Notification via {notifier.name} failed: {e}")
        return False


def create_notifier(settings) -> Notifier:
    """Select the notification backend from configuration"""
    backend = settings.NOTIFIER.lower()
    if backend == "sendgrid":
        if not settings.SENDGRID_API_KEY:
            logger.warning("SendGrid API key not configured, notifications will fail")
        return SendGridNotifier(settings.SENDGRID_API_KEY, settings.NOTIFY_FROM_EMAIL)
    if backend != "log":
        logger.warning(f"Unknown NOTIFIER '{backend}', notifications will be logged only")
    return LogNotifier()
