from __future__ import annotations

from phonegate.otp.attempts import STATUS_EXPIRED, STATUS_VERIFIED, OtpAttempt
from phonegate.otp.limiter import SCOPE_CREDENTIAL, SCOPE_PHONE, OtpRateLimiter, RateLimitPolicy, minutes_until

PHONE = "+14155552671"


def _sent(store, clock, phone=PHONE, key="pk_a", status="sent", ago=0.0):
    store.add(OtpAttempt(phone=phone, credential_key=key, provider_reference=None, status=status, created_at=clock.now - ago))


def test_fourth_send_to_same_phone_is_denied(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, clock=clock)
    for _ in range(3):
        assert limiter.check_allowed(PHONE, "pk_a").allowed
        _sent(attempt_store, clock)
        clock.advance(60)
    decision = limiter.check_allowed(PHONE, "pk_a")
    assert not decision.allowed
    assert decision.scope == SCOPE_PHONE
    assert "3 SMS requests per phone number per hour" in decision.reason
    # oldest send was 3 minutes ago, so it ages out in 57 minutes
    assert "approximately 57 minute(s)" in decision.reason
    assert decision.retry_after_seconds == 57 * 60


def test_phone_limit_applies_across_credentials(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, clock=clock)
    for key in ("pk_a", "pk_b", "pk_c"):
        _sent(attempt_store, clock, key=key)
    assert limiter.check_allowed(PHONE, "pk_d").scope == SCOPE_PHONE


def test_sends_older_than_window_do_not_count(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, clock=clock)
    for _ in range(3):
        _sent(attempt_store, clock, ago=61 * 60)
    assert limiter.check_allowed(PHONE, "pk_a").allowed


def test_only_sent_attempts_count(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, clock=clock)
    _sent(attempt_store, clock, status=STATUS_VERIFIED)
    _sent(attempt_store, clock, status=STATUS_EXPIRED)
    _sent(attempt_store, clock)
    _sent(attempt_store, clock)
    assert limiter.check_allowed(PHONE, "pk_a").allowed


def test_credential_limit_across_phones(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, clock=clock)
    for i in range(10):
        _sent(attempt_store, clock, phone=f"+1415555{i:04d}")
    decision = limiter.check_allowed("+14155559999", "pk_a")
    assert not decision.allowed
    assert decision.scope == SCOPE_CREDENTIAL
    assert "10 SMS requests per API key per hour" in decision.reason
    assert limiter.check_allowed("+14155559999", "pk_b").allowed


def test_custom_policy(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, RateLimitPolicy(window_seconds=600, per_phone=1), clock=clock)
    _sent(attempt_store, clock)
    assert not limiter.check_allowed(PHONE, "pk_a").allowed
    clock.advance(601)
    assert limiter.check_allowed(PHONE, "pk_a").allowed


def test_store_failure_fails_open(attempt_store, clock):
    degraded = []
    limiter = OtpRateLimiter(attempt_store, clock=clock, on_degraded=degraded.append)
    for _ in range(5):
        _sent(attempt_store, clock)
    attempt_store.fail_reads = True
    decision = limiter.check_allowed(PHONE, "pk_a")
    assert decision.allowed
    assert decision.degraded
    assert degraded == [SCOPE_PHONE, SCOPE_CREDENTIAL]


def test_store_failure_fails_closed_when_configured(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, RateLimitPolicy(fail_open=False), clock=clock)
    attempt_store.fail_reads = True
    decision = limiter.check_allowed(PHONE, "pk_a")
    assert not decision.allowed
    assert decision.degraded
    assert decision.retry_after_seconds == 60


def test_minutes_until_rounds_up_with_floor_of_one():
    assert minutes_until(100.0, 100.0) == 1
    assert minutes_until(161.0, 100.0) == 2
    assert minutes_until(3700.0, 100.0) == 60


def test_one_aged_out_send_frees_a_slot(attempt_store, clock):
    limiter = OtpRateLimiter(attempt_store, clock=clock)
    _sent(attempt_store, clock, ago=61 * 60)
    _sent(attempt_store, clock, ago=20 * 60)
    _sent(attempt_store, clock, ago=5 * 60)
    assert limiter.check_allowed(PHONE, "pk_a").allowed
