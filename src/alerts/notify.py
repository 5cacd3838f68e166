from __future__ import annotations

import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Callable

from src.config.settings import Settings

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "[Tradesight]"


class NotificationSender(ABC):
    @abstractmethod
    def send(self, user_id: str, subject: str, body: str) -> bool:
        """Returns True when the message was handed off."""


class LogNotificationSender(NotificationSender):
    """Writes notifications to the log and keeps them for inspection."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, user_id: str, subject: str, body: str) -> bool:
        self.sent.append((user_id, subject, body))
        logger.info("notification to user=%s: %s", user_id, subject)
        return True


class SmtpNotificationSender(NotificationSender):
    def __init__(
        self,
        host: str,
        port: int = 587,
        from_addr: str = "",
        username: str = "",
        password: str = "",
        resolve_address: Callable[[str], str | None] | None = None,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.from_addr = from_addr or username
        self.username = username
        self.password = password
        self.resolve_address = resolve_address or (lambda user_id: None)
        self.use_tls = use_tls

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        resolve_address: Callable[[str], str | None] | None = None,
    ) -> SmtpNotificationSender:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            from_addr=settings.alert_from_addr,
            username=settings.smtp_user,
            password=settings.smtp_password,
            resolve_address=resolve_address,
        )

    def send(self, user_id: str, subject: str, body: str) -> bool:
        to_addr = self.resolve_address(user_id)
        if not to_addr:
            logger.warning("no email address for user=%s; notification dropped", user_id)
            return False

        msg = EmailMessage()
        msg["Subject"] = f"{SUBJECT_PREFIX} {subject}"
        msg["From"] = self.from_addr
        msg["To"] = to_addr
        msg.set_content(body)

        try:
            self._smtp_send(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("email to user=%s failed (host=%s)", user_id, self.host)
            return False

        logger.info("email sent to user=%s: %s", user_id, subject)
        return True

    def _smtp_send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
