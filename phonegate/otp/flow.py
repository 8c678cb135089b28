from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Protocol

from ..core.errors import RateLimited, ValidationError
from .attempts import OtpAttempt
from .limiter import OtpRateLimiter
from .tracker import SessionTracker

logger = logging.getLogger(__name__)

CODE_RE = re.compile(r"^\d{6}$")


class OtpProvider(Protocol):
    def send(self, phone: str, channel: str = "sms"): ...

    def check(self, phone: str, code: str): ...


@dataclass
class SendResult:
    phone: str
    reference: str
    recorded: bool


@dataclass
class CheckResult:
    phone: str
    verified: bool
    attempt: OtpAttempt | None = None


class VerificationFlow:
    """send: validate -> rate limit -> provider send -> record.
    check: validate -> provider check -> record verdict.

    ``normalize_phone`` returns the E.164 form or raises ``ValidationError``.
    Provider failures (``ProviderError``) propagate untouched.
    """

    def __init__(
        self,
        limiter: OtpRateLimiter,
        tracker: SessionTracker,
        provider: OtpProvider,
        normalize_phone: Callable[[str], str],
    ):
        self.limiter = limiter
        self.tracker = tracker
        self.provider = provider
        self.normalize_phone = normalize_phone

    def send_code(self, raw_phone: str, credential_key: str, channel: str = "sms") -> SendResult:
        phone = self.normalize_phone(raw_phone)
        decision = self.limiter.check_allowed(phone, credential_key)
        if not decision.allowed:
            raise RateLimited(decision.reason or "", retry_after_seconds=decision.retry_after_seconds, scope=decision.scope)
        sent = self.provider.send(phone, channel=channel)
        attempt = self.tracker.record_send(phone, credential_key, sent.reference)
        logger.info("OTP sent to %s (ref=%s)", phone, sent.reference)
        return SendResult(phone=phone, reference=sent.reference, recorded=attempt is not None)

    def check_code(self, raw_phone: str, code: str, credential_key: str) -> CheckResult:
        if not code:
            raise ValidationError("Missing required parameter: code")
        code = str(code).strip()
        if not CODE_RE.match(code):
            raise ValidationError("Verification code must be 6 digits")
        phone = self.normalize_phone(raw_phone)
        result = self.provider.check(phone, code)
        attempt = self.tracker.record_verification(
            phone, credential_key, approved=result.approved, provider_reference=result.reference
        )
        return CheckResult(phone=phone, verified=result.approved, attempt=attempt)
