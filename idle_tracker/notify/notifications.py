import smtplib
import time
from collections import deque
from email.message import EmailMessage
from typing import Any

from idle_tracker.config import SmtpSettings
from idle_tracker.model.models import NotificationMessage
from idle_tracker.watchers.logger import logger

HISTORY_LIMIT = 100


class NotificationService:
    """SMTP でメッセージを1通ずつ送る通知サービス (履歴付き)."""

    def __init__(self, settings: SmtpSettings | None = None) -> None:
        self.settings = settings or SmtpSettings()
        self._history: deque[dict[str, Any]] = deque(maxlen=HISTORY_LIMIT)

    def notify(self, subject: str, body: str) -> bool:
        """メールを同期送信し、成否を返す.

        送信に失敗しても例外は投げない。失敗理由はログに残し ``False`` を返す。
        """
        error: str | None = None
        try:
            self._send(self._build_message(subject, body))
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            error = str(exc) or type(exc).__name__
            logger.warning(f"Failed to send email: {error}")
        self._history.append(
            {
                "subject": subject,
                "body": body,
                "timestamp": time.time(),
                "delivered": error is None,
                "error": error,
            },
        )
        return error is None

    def send(self, message: NotificationMessage) -> bool:
        """:meth:`notify` の ``NotificationMessage`` 版."""
        return self.notify(message["subject"], message["body"])

    def _build_message(self, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.sender
        msg["To"] = self.settings.recipient
        msg.set_content(body)
        return msg

    def _send(self, msg: EmailMessage) -> None:
        s = self.settings
        if not s.host:
            error = "SMTP host is not configured"
            raise ValueError(error)
        with smtplib.SMTP(s.host, s.port, timeout=s.timeout) as client:
            if s.enable_ssl:
                client.starttls()
            if s.username:
                client.login(s.username, s.password)
            client.send_message(msg)

    # ------------------------------------------------------------------
    # Query helpers
    def get_notification_history(self) -> list[dict[str, Any]]:
        """Return a copy of the notification history."""
        return list(self._history)
