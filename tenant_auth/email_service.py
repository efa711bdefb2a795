"""
Account e-mails: one-time codes, verification and reset links, sign-in notices.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol
from urllib.parse import quote

from tenant_auth.config import EmailConfig
from tenant_auth.exceptions import EmailSendError
from tenant_auth.models import User

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    """Delivery capability the auth core calls; it never formats transport itself."""

    def send_code(self, user: User, code: str) -> None: ...

    def send_verification_link(self, user: User, token: str) -> None: ...

    def send_forgot_password_link(self, user: User, token: str) -> None: ...

    def send_sign_in_notice(self, user: User, ip_address: Optional[str]) -> None: ...


class EmailService:
    """Send authentication emails over SMTP."""

    def __init__(self, config: EmailConfig):
        self.config = config

    def _link(self, path: str, token: str) -> str:
        return f"{self.config.client_url.rstrip('/')}{path}?token={quote(token, safe='')}"

    def _send(self, to_email: str, subject: str, body: str) -> None:
        """
        Send one HTML email.

        Raises:
            EmailSendError: If the SMTP exchange fails
        """
        try:
            msg = MIMEMultipart()
            msg['From'] = self.config.from_email
            msg['To'] = to_email
            msg['Subject'] = subject
            msg.attach(MIMEText(body, 'html'))

            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
                if self.config.smtp_use_tls:
                    server.starttls()
                if self.config.smtp_username:
                    server.login(self.config.smtp_username, self.config.smtp_password or "")
                server.send_message(msg)

            logger.info(f"'{subject}' sent to {to_email}")

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            raise EmailSendError(details={"email": to_email})

    def send_code(self, user: User, code: str) -> None:
        app = self.config.app_name
        body = f"""
        <html>
        <body>
            <h2>Your {app} sign-in code</h2>
            <p>Enter this code to finish signing in:</p>
            <p style="font-size: 24px; letter-spacing: 4px;"><strong>{code}</strong></p>
            <p>The code expires in a few minutes.</p>
            <p>If you didn't try to sign in, change your password.</p>
        </body>
        </html>
        """
        self._send(user.email, f"{app} verification code", body)

    def send_verification_link(self, user: User, token: str) -> None:
        app = self.config.app_name
        link = self._link("/auth/verify-account", token)
        body = f"""
        <html>
        <body>
            <h2>Welcome to {app}</h2>
            <p>Confirm your email address and choose a password:</p>
            <p><a href="{link}">Verify my account</a></p>
            <p>This link expires in 24 hours.</p>
        </body>
        </html>
        """
        self._send(user.email, f"Verify your {app} account", body)

    def send_forgot_password_link(self, user: User, token: str) -> None:
        app = self.config.app_name
        link = self._link("/auth/reset-password", token)
        body = f"""
        <html>
        <body>
            <h2>Reset your {app} password</h2>
            <p><a href="{link}">Choose a new password</a></p>
            <p>This link expires in 24 hours.</p>
            <p>If you didn't request this, please ignore this email.</p>
        </body>
        </html>
        """
        self._send(user.email, f"Reset your {app} password", body)

    def send_sign_in_notice(self, user: User, ip_address: Optional[str]) -> None:
        app = self.config.app_name
        body = f"""
        <html>
        <body>
            <h2>New sign-in to {app}</h2>
            <p>Your account was just signed in to from {ip_address or 'an unknown address'}.</p>
            <p>If this wasn't you, reset your password.</p>
        </body>
        </html>
        """
        self._send(user.email, f"New sign-in to {app}", body)
