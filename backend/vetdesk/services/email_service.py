"""
SMTP email delivery.

Used in development against MailDev (no auth) and anywhere EMAIL_MODE=smtp.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Dict, Optional

from ..core.config import settings


logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending transactional emails over SMTP."""

    def __init__(self):
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.from_email
        self.from_name = settings.from_name

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an email.

        Returns:
            {"success": True, "message_id": str, "provider": "smtp"} or
            {"success": False, "error": str}
        """
        message_id = make_msgid(domain=self.from_email.split("@")[-1] or None)
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{from_name or self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            msg["Message-ID"] = message_id

            if text_content:
                msg.attach(MIMEText(text_content, "plain"))
            msg.attach(MIMEText(html_content, "html"))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                # MailDev needs no auth
                if self.smtp_username and self.smtp_password:
                    server.starttls()
                    server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)

            logger.info(f"Email sent successfully to {to_email}")
            return {"success": True, "message_id": message_id, "provider": "smtp"}

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return {"success": False, "error": str(e)}


email_service = EmailService()
