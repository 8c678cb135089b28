from __future__ import annotations

import os
from functools import lru_cache


def _truthy(value: str | None) -> bool:
    return (value or "").strip() in {"1", "true", "TRUE", "on", "yes"}


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class Settings:
    """Service configuration, read from the environment once per process.

    Tests call ``get_settings.cache_clear()`` after changing env vars.
    """

    def __init__(self):
        self.project_name = "phonegate"
        self.api_version = "v1"
        self.store_backend = os.getenv("PHONEGATE_STORE_BACKEND", "memory").lower()
        self.credentials_collection = os.getenv("PHONEGATE_CREDENTIALS_COLLECTION", "api_keys")
        self.otp_collection = os.getenv("PHONEGATE_OTP_COLLECTION", "otp_requests")
        self.default_plan = os.getenv("PHONEGATE_DEFAULT_PLAN", "standard").lower()
        self.key_prefix = os.getenv("PHONEGATE_KEY_PREFIX", "pk_")
        self.default_country = os.getenv("PHONEGATE_DEFAULT_COUNTRY", "US").upper()
        self.order_amount = os.getenv("PHONEGATE_ORDER_AMOUNT", "10.00")
        self.api_base_url = os.getenv("PHONEGATE_API_BASE_URL")

        # OTP limiter
        self.otp_window_seconds = max(1, _int("PHONEGATE_OTP_WINDOW_SECONDS", 3600))
        self.otp_per_phone = _int("PHONEGATE_OTP_PER_PHONE", 3)
        self.otp_per_key = _int("PHONEGATE_OTP_PER_KEY", 10)
        self.otp_fail_open = _truthy(os.getenv("PHONEGATE_OTP_FAIL_OPEN", "1"))

        # PayPal
        self.paypal_client_id = os.getenv("PAYPAL_CLIENT_ID")
        self.paypal_client_secret = os.getenv("PAYPAL_CLIENT_SECRET")
        self.paypal_mode = os.getenv("PAYPAL_MODE", "live").lower()
        self.paypal_webhook_id = os.getenv("PAYPAL_WEBHOOK_ID")

        # Twilio Verify
        self.twilio_sid = os.getenv("TWILIO_SID")
        self.twilio_auth_token = os.getenv("TWILIO_AUTH_TOKEN")
        self.twilio_verify_service = os.getenv("TWILIO_VERIFY_SERVICE")

        # Email
        self.email_mode = os.getenv("PHONEGATE_EMAIL_MODE", "none").lower()
        self.email_from = os.getenv("PHONEGATE_EMAIL_FROM", "")
        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = _int("SMTP_PORT", 587)
        self.smtp_user = os.getenv("SMTP_USER", "")
        self.smtp_pass = os.getenv("SMTP_PASS", "")
        self.smtp_tls = _truthy(os.getenv("SMTP_TLS", "1"))
        self.resend_key = os.getenv("RESEND_KEY", "")

        # HTTP ops
        self.admin_secret = os.getenv("PHONEGATE_ADMIN_SECRET")
        self.cors_allow_origins = os.getenv("PHONEGATE_CORS_ALLOW_ORIGINS", "*").strip()
        self.max_body_bytes = _int("PHONEGATE_MAX_BODY_BYTES", 1048576)
        self.ip_rate_limit = _int("PHONEGATE_IP_RATE_LIMIT", 5)
        self.ip_rate_window = max(1, _int("PHONEGATE_IP_RATE_WINDOW", 60))
        self.trust_xff = _truthy(os.getenv("PHONEGATE_TRUST_XFF"))
        self.json_logs = _truthy(os.getenv("PHONEGATE_JSON_LOGS"))


@lru_cache
def get_settings() -> Settings:
    return Settings()
