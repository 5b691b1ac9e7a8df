"""
Email Service

SMTP delivery for second-factor verification codes.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from jinja2 import DictLoader, Environment, select_autoescape

from gatekeeper.config import settings

logger = logging.getLogger(__name__)

TEMPLATES = {
    "verification_code.html": """
<h2>Your {{ app_name }} verification code</h2>
<p>Use this code to verify your identity:</p>
<div style="font-size: 32px; font-weight: bold; letter-spacing: 8px;
            padding: 16px; background: #f0f0f0; text-align: center;
            border-radius: 8px; margin: 16px 0;">{{ code }}</div>
<p>This code expires in {{ expires_minutes }} minutes.</p>
<p>If you did not request this code, please ignore this email and secure your account.</p>
""",
}


class EmailService:
    """Service for sending emails with template support"""

    def __init__(self):
        self.env = Environment(
            loader=DictLoader(TEMPLATES),
            autoescape=select_autoescape(["html", "xml"]),
        )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_from = settings.smtp_from

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """
        Send an email using SMTP.

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = self.smtp_from
            msg["To"] = to_email

            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {e}")
            return False

    def send_verification_code(self, to_email: str, code: str, expires_minutes: int = 10) -> bool:
        """Send a second-factor verification code."""
        template = self.env.get_template("verification_code.html")
        html_body = template.render(app_name=settings.app_name, code=code, expires_minutes=expires_minutes)
        text_body = f"Your verification code is: {code}\n\nThis code expires in {expires_minutes} minutes."

        return self._send_email(
            to_email=to_email,
            subject=f"{settings.app_name} - Your verification code",
            html_body=html_body,
            text_body=text_body,
        )
