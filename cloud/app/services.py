"""Process-wide service objects, built lazily from settings.

Provider clients are only constructed on first use so a missing Twilio or
PayPal secret surfaces as a request error instead of an import failure.
``reset_services()`` drops every cached instance (tests, env changes).
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable

from phonegate.adapters.notify import EmailNotifier
from phonegate.adapters.paypal import PayPalClient
from phonegate.adapters.phone import to_e164
from phonegate.adapters.twilio_verify import TwilioVerifyProvider
from phonegate.core.credentials import CredentialStore, FirestoreCredentialStore, InMemoryCredentialStore
from phonegate.core.issuer import CredentialIssuer
from phonegate.core.pipeline import PaymentPipeline
from phonegate.otp.attempts import AttemptStore, FirestoreAttemptStore, InMemoryAttemptStore
from phonegate.otp.flow import VerificationFlow
from phonegate.otp.limiter import OtpRateLimiter, RateLimitPolicy
from phonegate.otp.tracker import SessionTracker

from .config import get_settings

logger = logging.getLogger("phonegate")

_lock = threading.Lock()
_instances: dict[str, Any] = {}

# set by main so the limiter can count degraded reads without importing the app
on_limiter_degraded: Callable[[str], None] | None = None


def _cached(name: str, build: Callable[[], Any]) -> Any:
    inst = _instances.get(name)
    if inst is not None:
        return inst
    # builders call other getters, so build outside the lock; the first stored instance wins
    inst = build()
    with _lock:
        return _instances.setdefault(name, inst)


def set_service(name: str, instance: Any) -> None:
    """Install a prebuilt instance (fakes in tests, custom stores)."""
    with _lock:
        _instances[name] = instance


def reset_services() -> None:
    with _lock:
        _instances.clear()


def _build_credential_store() -> CredentialStore:
    s = get_settings()
    if s.store_backend == "firestore":
        return FirestoreCredentialStore(collection=s.credentials_collection)
    if s.store_backend != "memory":
        logger.warning("unknown store backend %r; using memory", s.store_backend)
    return InMemoryCredentialStore()


def _build_attempt_store() -> AttemptStore:
    s = get_settings()
    if s.store_backend == "firestore":
        return FirestoreAttemptStore(collection=s.otp_collection)
    return InMemoryAttemptStore()


def get_credential_store() -> CredentialStore:
    return _cached("credential_store", _build_credential_store)


def get_attempt_store() -> AttemptStore:
    return _cached("attempt_store", _build_attempt_store)


def get_notifier() -> EmailNotifier:
    def build():
        s = get_settings()
        return EmailNotifier(
            mode=s.email_mode,
            from_addr=s.email_from,
            smtp_host=s.smtp_host,
            smtp_port=s.smtp_port,
            smtp_user=s.smtp_user,
            smtp_pass=s.smtp_pass,
            smtp_tls=s.smtp_tls,
            resend_key=s.resend_key,
            api_base_url=s.api_base_url,
        )

    return _cached("notifier", build)


def get_issuer() -> CredentialIssuer:
    def build():
        s = get_settings()
        return CredentialIssuer(
            get_credential_store(),
            notifier=get_notifier(),
            default_plan=s.default_plan,
            key_prefix=s.key_prefix,
        )

    return _cached("issuer", build)


def get_paypal() -> PayPalClient:
    def build():
        s = get_settings()
        return PayPalClient(s.paypal_client_id, s.paypal_client_secret, mode=s.paypal_mode)

    return _cached("paypal", build)


def get_pipeline() -> PaymentPipeline:
    return _cached("pipeline", lambda: PaymentPipeline(get_paypal(), get_issuer()))


def get_otp_provider() -> TwilioVerifyProvider:
    def build():
        s = get_settings()
        return TwilioVerifyProvider(s.twilio_sid, s.twilio_auth_token, s.twilio_verify_service)

    return _cached("otp_provider", build)


def get_limiter() -> OtpRateLimiter:
    def build():
        s = get_settings()
        policy = RateLimitPolicy(
            window_seconds=s.otp_window_seconds,
            per_phone=s.otp_per_phone,
            per_credential=s.otp_per_key,
            fail_open=s.otp_fail_open,
        )
        return OtpRateLimiter(get_attempt_store(), policy, on_degraded=on_limiter_degraded)

    return _cached("limiter", build)


def get_tracker() -> SessionTracker:
    return _cached("tracker", lambda: SessionTracker(get_attempt_store()))


def get_flow() -> VerificationFlow:
    def build():
        country = get_settings().default_country
        return VerificationFlow(
            get_limiter(),
            get_tracker(),
            get_otp_provider(),
            normalize_phone=lambda raw: to_e164(raw, default_country=country),
        )

    return _cached("flow", build)


class WebhookEventLog:
    """Bounded in-memory record of payment notifications, newest last."""

    def __init__(self, maxlen: int = 500):
        self.maxlen = maxlen
        self._lock = threading.Lock()
        self._events: OrderedDict[str, dict] = OrderedDict()

    def add(self, event_id: str, record: dict) -> None:
        with self._lock:
            self._events[event_id] = record
            self._events.move_to_end(event_id)
            while len(self._events) > self.maxlen:
                self._events.popitem(last=False)

    def recent(self, limit: int = 50) -> list[dict]:
        with self._lock:
            events = list(self._events.values())
        events.sort(key=lambda r: r.get("ts", 0), reverse=True)
        return events[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


def get_webhook_log() -> WebhookEventLog:
    return _cached("webhook_log", WebhookEventLog)
