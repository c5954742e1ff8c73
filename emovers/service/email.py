from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from string import Template
from typing import Any, Dict, Mapping, Optional

from emovers.logging import get_logger

logger = get_logger(__name__)

EMAIL_VERIFICATION = "email_verification"
LOGIN_OTP = "login_otp"
PASSWORD_RESET_OTP = "password_reset_otp"
WELCOME = "welcome"

_HTML_SHELL = Template(
    """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933; }
        .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
        .code { font-size: 28px; letter-spacing: 6px; font-weight: 700; margin: 30px 0; }
        .footer { margin-top: 40px; font-size: 12px; color: #5b6470; }
    </style>
</head>
<body>
    <div class="container">
        <h1>$heading</h1>
        <p>Hi $name,</p>
        <p>$lead</p>
        $code_block
        <p>$tail</p>
        <div class="footer"><p>$brand</p></div>
    </div>
</body>
</html>
"""
)

# kind -> (subject, heading, lead, tail); codes are rendered when ``otp`` is given
_TEMPLATES: Dict[str, tuple[str, str, str, str]] = {
    EMAIL_VERIFICATION: (
        "Verify your $brand email",
        "Verify your email",
        "Use the code below to verify your email address.",
        "This code expires in $ttl minutes.",
    ),
    LOGIN_OTP: (
        "Your $brand sign-in code",
        "Sign-in code",
        "Use the code below to finish signing in.",
        "This code expires in $ttl minutes. If you did not try to sign in, change your password.",
    ),
    PASSWORD_RESET_OTP: (
        "Reset your $brand password",
        "Reset your password",
        "We received a request to reset your password. Use the code below to choose a new one.",
        "This code expires in $ttl minutes. If you didn't request this, you can safely ignore this email.",
    ),
    WELCOME: (
        "Welcome to $brand",
        "Welcome aboard",
        "Your email is verified and your account is ready.",
        "Sign in at $base_url to book your first move.",
    ),
}


class EmailService:
    """Transactional mail over SMTP.

    ``send`` never raises; it returns False and logs when delivery fails.
    Without an SMTP host the message is logged instead of sent (dev mode).
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
        from_name: str = "E-movers",
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = base_url or "http://localhost:8000"
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def render(self, template_kind: str, params: Mapping[str, Any]) -> tuple[str, str, str]:
        """Return ``(subject, html_body, text_body)`` for a template kind."""
        try:
            subject, heading, lead, tail = _TEMPLATES[template_kind]
        except KeyError:
            raise ValueError(f"unknown email template: {template_kind}")
        values = {
            "brand": self.from_name,
            "base_url": self.base_url,
            "name": params.get("name") or "there",
            "ttl": params.get("ttl_minutes", ""),
        }
        subject = Template(subject).safe_substitute(values)
        tail = Template(tail).safe_substitute(values)
        otp = params.get("otp")
        code_block = f'<p class="code">{otp}</p>' if otp else ""
        html_body = _HTML_SHELL.safe_substitute(
            values, heading=heading, lead=lead, tail=tail, code_block=code_block
        )
        text_lines = [heading, "", f"Hi {values['name']},", "", lead]
        if otp:
            text_lines += ["", str(otp)]
        text_lines += ["", tail, "", "---", self.from_name]
        return subject, html_body, "\n".join(text_lines) + "\n"

    def send(self, to: str, template_kind: str, params: Optional[Mapping[str, Any]] = None) -> bool:
        subject, html_body, text_body = self.render(template_kind, params or {})
        return self._send_email(to, subject, html_body, text_body, template_kind=template_kind)

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        template_kind: str,
    ) -> bool:
        if not self.is_configured:
            # Dev mode: the body carries a live code, so only the kind is logged
            logger.info(
                "email_dev_mode",
                to=self._redact_email(to_email),
                subject=subject,
                template_kind=template_kind,
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
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
                smtp_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=self._redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            # connection refused, TLS failures and socket timeouts
            logger.error(
                "email_transport_error",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        logger.info(
            "email_sent",
            to=self._redact_email(to_email),
            template_kind=template_kind,
        )
        return True
