"""
Delivery of emailed verification codes over SMTP.
"""
import os
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from ..utils.secrets import get_secret

logger = logging.getLogger(__name__)


class DeliveryNotConfigured(Exception):
    """No SMTP host is configured."""


class EmailSender:
    """
    Sends plain-text verification emails.

    Settings default to SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD and
    SMTP_FROM. STARTTLS is used whenever credentials are set.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
    ):
        self.host = host if host is not None else os.getenv("SMTP_HOST", "")
        self.port = port or int(os.getenv("SMTP_PORT", "587"))
        self.username = username if username is not None else os.getenv("SMTP_USER", "")
        self.password = password if password is not None else get_secret("SMTP_PASSWORD", "")
        self.sender = sender or os.getenv("SMTP_FROM", "no-reply@trustgate.local")

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def send_verification_code(self, recipient: str, code: str, ttl_seconds: int) -> None:
        """
        Email a verification code.

        Raises:
            DeliveryNotConfigured: If SMTP_HOST is not set.
            smtplib.SMTPException, OSError: On delivery failure.
        """
        if not self.configured:
            raise DeliveryNotConfigured("SMTP_HOST is not set")

        message = EmailMessage()
        message["Subject"] = "Your verification code"
        message["From"] = self.sender
        message["To"] = recipient
        message.set_content(
            f"Your verification code is {code}.\n\n"
            f"It expires in {ttl_seconds // 60} minutes and can be used once.\n"
            "If you did not request this code, change your password."
        )

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.username:
                smtp.starttls()
                smtp.login(self.username, self.password)
            smtp.send_message(message)

        logger.info(f"Verification code emailed via {self.host}")
