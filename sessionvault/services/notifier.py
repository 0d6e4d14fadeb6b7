from __future__ import annotations

import re
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol
from urllib.parse import quote

from sessionvault.core.config import Settings, settings
from sessionvault.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_PARAM = re.compile(r"token=([^&\s]+)", re.IGNORECASE)


class Notifier(Protocol):
    def send_verification_email(self, address: str, raw_token: str, user_id: int) -> None: ...

    def send_password_reset_email(self, address: str, raw_token: str, user_id: int) -> None: ...


def build_auth_link(base_url: str, path: str, token: str) -> str:
    normalized_path = path if path.startswith("/") else f"/{path}"
    link = f"{normalized_path}?token={quote(token, safe='')}"
    base = base_url.rstrip("/")
    return f"{base}{link}" if base else link


def redact_tokens(value: str) -> str:
    return _TOKEN_PARAM.sub("token=[REDACTED]", value)


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpNotifier:
    """Sends verification and password reset links over SMTP.

    When no SMTP host or sender is configured the message is only logged,
    with the token redacted from the link.
    """

    def __init__(
        self,
        *,
        smtp_host: str | None = None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        smtp_use_tls: bool = True,
        from_email: str | None = None,
        frontend_base_url: str = "",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.frontend_base_url = frontend_base_url

    @classmethod
    def from_settings(cls, config: Settings = settings) -> SmtpNotifier:
        return cls(
            smtp_host=config.SMTP_HOST or None,
            smtp_port=config.SMTP_PORT,
            smtp_user=config.SMTP_USER or None,
            smtp_password=config.SMTP_PASSWORD or None,
            smtp_use_tls=config.SMTP_USE_TLS,
            from_email=config.EMAIL_FROM or None,
            frontend_base_url=config.FRONTEND_BASE_URL,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_verification_email(self, address: str, raw_token: str, user_id: int) -> None:
        link = build_auth_link(self.frontend_base_url, "/verify-email", raw_token)
        self._send(
            address,
            subject="Verify your email address",
            text_body=f"Confirm your email address by opening this link:\n\n{link}",
            html_body=f'<p>Confirm your email address by opening this link:</p><p><a href="{link}">{link}</a></p>',
            user_id=user_id,
        )

    def send_password_reset_email(self, address: str, raw_token: str, user_id: int) -> None:
        link = build_auth_link(self.frontend_base_url, "/reset-password", raw_token)
        warning = "If you did not request a password reset, you can ignore this email."
        self._send(
            address,
            subject="Reset your password",
            text_body=f"Reset your password by opening this link:\n\n{link}\n\n{warning}",
            html_body=(
                f'<p>Reset your password by opening this link:</p><p><a href="{link}">{link}</a></p>'
                f"<p>{warning}</p>"
            ),
            user_id=user_id,
        )

    def _send(self, to_email: str, *, subject: str, text_body: str, html_body: str, user_id: int) -> None:
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=redact_email(to_email),
                subject=subject,
                body_preview=redact_tokens(text_body)[:200],
                user_id=user_id,
            )
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email or ""
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

        logger.info("email_sent", to=redact_email(to_email), subject=subject, user_id=user_id)
