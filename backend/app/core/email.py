"""
Email Service
Sends purchase confirmations and invoices over SMTP
"""

import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Email service for sending notifications"""

    def __init__(self, smtp_host: str = None, smtp_port: int = 587):
        self.smtp_host = smtp_host or "localhost"
        self.smtp_port = smtp_port
        self.configured = False

    def configure(
        self,
        smtp_host: str,
        smtp_port: int,
        username: str,
        password: str,
        use_tls: bool = True,
        from_email: str = "noreply@nightlife.local",
        from_name: str = "",
    ) -> None:
        """Configure SMTP settings"""
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.configured = True
        logger.info(f"Email service configured for {smtp_host}")

    def _sender(self) -> str:
        if self.from_name:
            return f"{self.from_name} <{self.from_email}>"
        return self.from_email

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        attachments: Optional[List[dict]] = None
    ) -> bool:
        """
        Send an email

        Args:
            to: Recipient email address
            subject: Email subject
            body: Plain text body
            html_body: Optional HTML body
            attachments: Optional list of ``{"filename", "content", "content_id"?}``;
                PNG content with a ``content_id`` is embedded inline

        Returns:
            True if sent successfully
        """
        if not self.configured:
            logger.warning(f"Email not configured, would send to {to}: {subject}")
            return False

        try:
            msg = MIMEMultipart('related')
            msg['Subject'] = subject
            msg['From'] = self._sender()
            msg['To'] = to

            alternative = MIMEMultipart('alternative')
            alternative.attach(MIMEText(body, 'plain'))
            if html_body:
                alternative.attach(MIMEText(html_body, 'html'))
            msg.attach(alternative)

            for attachment in attachments or []:
                content = attachment["content"]
                filename = attachment.get("filename", "attachment")
                if filename.endswith(".png"):
                    part = MIMEImage(content, 'png')
                else:
                    part = MIMEApplication(content)
                if attachment.get("content_id"):
                    part.add_header('Content-ID', f"<{attachment['content_id']}>")
                    part.add_header('Content-Disposition', 'inline', filename=filename)
                else:
                    part.add_header('Content-Disposition', 'attachment', filename=filename)
                msg.attach(part)

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, to, msg.as_string())

            logger.info(f"Email sent to {to}: {subject}")
            return True

        except Exception as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False


# Global email service instance
_email_service = EmailService()


def configure_email_from_settings() -> bool:
    """Configure the global service from SMTP settings, if present."""
    if not settings.smtp_user or not settings.smtp_from_email:
        logger.info("SMTP not configured; purchase emails will be logged only")
        return False
    _email_service.configure(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        from_email=settings.smtp_from_email,
        from_name=settings.smtp_from_name,
    )
    return True


def get_email_service() -> EmailService:
    return _email_service
