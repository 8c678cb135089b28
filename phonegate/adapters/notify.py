from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from ..core.credentials import Credential

logger = logging.getLogger(__name__)

SUBJECT = "Welcome to Phone Validation API - Your API Key is Ready!"


def render_welcome(credential: Credential, name: str | None = None, api_base_url: str | None = None) -> str:
    greeting = f"Hi {name}," if name else "Hi there,"
    lines = [
        greeting,
        "",
        "Thanks for signing up. Your API key is ready.",
        "",
        f"API Key: {credential.key}",
        f"Your Plan: {credential.plan_name}",
        f"Monthly Requests: {credential.requests_limit:,} requests/month",
        "",
        "Use your API key in the x-api-key header when making requests:",
        f"  curl -H \"x-api-key: {credential.key}\" \"{(api_base_url or 'https://your-api-domain.com').rstrip('/')}/v1/validate?phone=%2B14155552671\"",
        "",
        "Keep this key secret.",
    ]
    return "\n".join(lines) + "\n"


class EmailNotifier:
    """Best-effort welcome mail.

    Modes:
      - ``none``: never sends
      - ``console``: logs the message (dev)
      - ``smtp``: smtplib with optional STARTTLS/login
      - ``resend``: Resend HTTP API

    ``send_welcome`` returns True when a message was handed off and False
    otherwise; failures are logged and never raised.
    """

    def __init__(
        self,
        mode: str = "none",
        from_addr: str = "",
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_pass: str = "",
        smtp_tls: bool = True,
        resend_key: str = "",
        api_base_url: str | None = None,
    ):
        self.mode = (mode or "none").lower()
        self.from_addr = from_addr
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_tls = smtp_tls
        self.resend_key = resend_key
        self.api_base_url = api_base_url

    def send_welcome(self, to_email: str, credential: Credential, name: str | None = None) -> bool:
        if not to_email or self.mode == "none":
            return False
        body = render_welcome(credential, name, self.api_base_url)
        try:
            if self.mode == "console":
                logger.info("[email:console] to=%s subject=%s\n%s", to_email, SUBJECT, body)
                return True
            if self.mode == "smtp":
                return self._send_smtp(to_email, body)
            if self.mode == "resend":
                return self._send_resend(to_email, body)
        except Exception:  # noqa: BLE001
            logger.exception("welcome email to %s failed (mode=%s)", to_email, self.mode)
            return False
        logger.warning("unknown email mode %r; welcome email not sent", self.mode)
        return False

    def _send_smtp(self, to_email: str, body: str) -> bool:
        if not (self.from_addr and self.smtp_host):
            logger.error("smtp mode requires PHONEGATE_EMAIL_FROM and SMTP_HOST")
            return False
        msg = EmailMessage()
        msg["From"] = self.from_addr
        msg["To"] = to_email
        msg["Subject"] = SUBJECT
        msg.set_content(body)
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as s:
            if self.smtp_tls:
                s.starttls()
            if self.smtp_user:
                s.login(self.smtp_user, self.smtp_pass)
            s.send_message(msg)
        return True

    def _send_resend(self, to_email: str, body: str) -> bool:
        if not self.resend_key:
            logger.error("RESEND_KEY is not set; welcome email not sent")
            return False
        import resend

        resend.api_key = self.resend_key
        resend.Emails.send(
            {
                "from": self.from_addr or "onboarding@resend.dev",
                "to": [to_email],
                "subject": SUBJECT,
                "text": body,
            }
        )
        return True
