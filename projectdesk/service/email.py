from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from projectdesk.logging import get_logger

logger = get_logger(__name__)


class EmailService:
    """Transactional mail for account verification and password reset.

    When SMTP is not configured the message is logged instead of sent, which is
    what local development and the test suite rely on. Every send reports
    success as a bool; callers decide whether a failed send is fatal.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "ProjectDesk",
        base_url: Optional[str] = None,
        verification_ttl_minutes: int = 20,
        reset_ttl_minutes: int = 60,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:8000").rstrip("/")
        self.verification_ttl_minutes = verification_ttl_minutes
        self.reset_ttl_minutes = reset_ttl_minutes

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        """Redact an email address for logging to avoid PII leakage."""
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        if not self.is_configured:
            # Dev mode: log instead of sending; the body carries a live link so it is not logged
            logger.info(
                "email_dev_mode",
                recipient=self._redact_email(to_email),
                subject=subject,
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        context = ssl.create_default_context()

        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                recipient=self._redact_email(to_email),
                host=self.smtp_host,
                error_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused:
            logger.error("email_recipient_refused", recipient=self._redact_email(to_email))
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                recipient=self._redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            # OSError covers refused connections and socket timeouts
            logger.error(
                "email_connect_failed",
                recipient=self._redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        logger.info("email_sent", recipient=self._redact_email(to_email), subject=subject)
        return True

    @staticmethod
    def _html(heading: str, greeting: str, intro: str, link: str, label: str, outro: str) -> str:
        return f"""<!DOCTYPE html>
<html>
<body style="font-family: sans-serif; line-height: 1.6; color: #1f2933;">
    <h1>{heading}</h1>
    <p>{greeting}</p>
    <p>{intro}</p>
    <p style="margin: 30px 0;"><a href="{link}">{label}</a></p>
    <p>{outro}</p>
</body>
</html>
"""

    def send_email_verification(self, to_email: str, username: str, token: str) -> bool:
        verify_url = f"{self.base_url}/api/v1/auth/verify-email?token={token}"
        subject = "Verify your ProjectDesk email"
        intro = (
            "Welcome to ProjectDesk! To get started, please verify your email "
            "address using the link below."
        )
        outro = (
            f"This link expires in {self.verification_ttl_minutes} minutes. "
            "If you didn't create an account, no further action is required."
        )
        text_body = f"Hi {username},\n\n{intro}\n\n{verify_url}\n\n{outro}\n"
        html_body = self._html(
            "Verify your email", f"Hi {username},", intro, verify_url, "Verify your email", outro
        )
        return self._send_email(to_email, subject, html_body, text_body)

    def send_password_reset(self, to_email: str, username: str, token: str) -> bool:
        reset_url = f"{self.base_url}/reset-password?token={token}"
        subject = "Reset your ProjectDesk password"
        intro = "We received a request to reset your password. Use the link below to choose a new one."
        outro = (
            f"This link expires in {self.reset_ttl_minutes} minutes. "
            "If you didn't request this, you can safely ignore this email."
        )
        text_body = f"Hi {username},\n\n{intro}\n\n{reset_url}\n\n{outro}\n"
        html_body = self._html(
            "Reset your password", f"Hi {username},", intro, reset_url, "Reset your password", outro
        )
        return self._send_email(to_email, subject, html_body, text_body)
