"""
Best-effort email notifications for submission events.

This module provides:
- MailMessage, the transport-neutral message shape
- SmtpTransport for account-based SMTP delivery (Gmail by default)
- SesTransport for Amazon SES delivery through boto3
- NotificationDispatcher, which sends on a background pool and logs failures

Delivery is attempted exactly once per message. A failed send never
propagates to the request that triggered it.
"""

from __future__ import annotations

import logging
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from email.message import EmailMessage
from threading import Lock
from typing import Optional, Protocol, Set

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import NotificationError
from .models import MailSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    text: str


class MailTransport(Protocol):
    def send(self, sender: str, message: MailMessage) -> None: ...

    def verify(self) -> None: ...


class SmtpTransport:
    """SMTP over SSL with account login, one connection per message."""

    def __init__(self, host: str, port: int, user: str, password: str, timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP_SSL:
        server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        server.login(self.user, self.password)
        return server

    def send(self, sender: str, message: MailMessage) -> None:
        email = EmailMessage()
        email["From"] = sender
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.text)

        with self._connect() as server:
            server.send_message(email)

    def verify(self) -> None:
        with self._connect() as server:
            server.noop()


class SesTransport:
    """Amazon SES delivery; credentials come from the standard AWS chain."""

    def __init__(self, region: Optional[str] = None, client=None):
        self._client = client or boto3.client("ses", region_name=region)

    def send(self, sender: str, message: MailMessage) -> None:
        self._client.send_email(
            Source=sender,
            Destination={"ToAddresses": [message.to]},
            Message={
                "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": message.text, "Charset": "UTF-8"}},
            },
        )

    def verify(self) -> None:
        quota = self._client.get_send_quota()
        logger.info(f"SES send quota: {quota.get('SentLast24Hours', 0)}/{quota.get('Max24HourSend', 0)} in the last 24h")


def build_transport(settings: MailSettings) -> MailTransport:
    if settings.transport == "ses":
        return SesTransport(region=settings.aws_region)
    return SmtpTransport(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.user,
        password=settings.password or "",
    )


class NotificationDispatcher:
    """
    Sends mail through a transport without blocking the caller.

    Thread Safety:
        Pending futures are tracked under a lock so flush() can be called
        from any thread.
    """

    def __init__(self, transport: MailTransport, sender: str, max_workers: int = 2):
        self.transport = transport
        self.sender = sender
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: Set[Future] = set()
        self._lock = Lock()

    def send(self, message: MailMessage) -> None:
        """
        Deliver one message synchronously, with a single attempt.

        Raises:
            NotificationError: If the transport rejects or cannot deliver the message
        """
        try:
            self.transport.send(self.sender, message)
        except (smtplib.SMTPException, OSError, ValueError, ClientError, BotoCoreError) as exc:
            raise NotificationError(f"Failed to send '{message.subject}' to {message.to}: {exc}") from exc
        logger.info(f"Sent '{message.subject}'", extra={"recipient": message.to})

    def _send_logged(self, message: MailMessage) -> bool:
        try:
            self.send(message)
        except NotificationError as exc:
            logger.error(str(exc), extra={"recipient": message.to})
            return False
        except Exception:
            logger.exception(f"Unexpected error sending '{message.subject}'", extra={"recipient": message.to})
            return False
        return True

    def dispatch(self, message: MailMessage) -> Optional[Future]:
        """Queue a message for delivery; failures are logged, never raised."""
        try:
            future = self._executor.submit(self._send_logged, message)
        except RuntimeError as exc:
            logger.error(f"Could not queue '{message.subject}': {exc}", extra={"recipient": message.to})
            return None
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for every queued message to finish sending."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def verify(self) -> bool:
        """
        Check that the transport accepts our credentials.

        The outcome is only a readiness signal for the startup log; sends are
        still attempted when verification fails.
        """
        try:
            self.transport.verify()
        except (smtplib.SMTPException, OSError, ClientError, BotoCoreError) as exc:
            logger.error(f"Mail transport verification failed: {exc}")
            return False
        logger.info("Mail transport is ready to send emails")
        return True

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
