from __future__ import annotations

import pytest
from conftest import FakeOtpProvider

from phonegate.adapters.phone import to_e164
from phonegate.core.errors import ProviderError, RateLimited, ValidationError
from phonegate.otp.attempts import STATUS_SENT, STATUS_VERIFIED
from phonegate.otp.flow import VerificationFlow
from phonegate.otp.limiter import OtpRateLimiter
from phonegate.otp.tracker import SessionTracker

PHONE = "+16502530000"


@pytest.fixture
def provider():
    return FakeOtpProvider()


@pytest.fixture
def flow(attempt_store, clock, provider):
    return VerificationFlow(
        OtpRateLimiter(attempt_store, clock=clock),
        SessionTracker(attempt_store, clock=clock),
        provider,
        normalize_phone=to_e164,
    )


def test_send_then_check(flow, provider, attempt_store):
    sent = flow.send_code("+1 (650) 253-0000", "pk_a")
    assert sent.phone == PHONE
    assert sent.reference == "VE0001"
    assert sent.recorded
    checked = flow.check_code(PHONE, "123456", "pk_a")
    assert checked.verified
    assert attempt_store.all()[0].status == STATUS_VERIFIED


def test_wrong_code_is_not_verified(flow, attempt_store):
    flow.send_code(PHONE, "pk_a")
    checked = flow.check_code(PHONE, "654321", "pk_a")
    assert not checked.verified
    assert attempt_store.all()[0].status == STATUS_SENT


def test_fourth_send_raises_rate_limited(flow, provider, clock):
    for _ in range(3):
        flow.send_code(PHONE, "pk_a")
        clock.advance(10)
    with pytest.raises(RateLimited) as exc:
        flow.send_code(PHONE, "pk_a")
    assert exc.value.retry_after_seconds > 0
    assert exc.value.status_code == 429
    assert len(provider.sent) == 3


@pytest.mark.parametrize("code", ["12345", "1234567", "abcdef", "12 456"])
def test_malformed_code_never_reaches_provider(flow, provider, code):
    with pytest.raises(ValidationError):
        flow.check_code(PHONE, code, "pk_a")
    assert provider.checked == []


def test_invalid_phone_is_rejected_before_limiter(flow, provider):
    with pytest.raises(ValidationError):
        flow.send_code("12", "pk_a")
    assert provider.sent == []


def test_provider_errors_propagate(flow, provider):
    provider.error = ProviderError("invalid_destination", "landline")
    with pytest.raises(ProviderError) as exc:
        flow.send_code(PHONE, "pk_a")
    assert exc.value.status_code == 400


def test_send_succeeds_when_bookkeeping_fails(flow, attempt_store):
    attempt_store.fail_writes = True
    sent = flow.send_code(PHONE, "pk_a")
    assert sent.reference
    assert not sent.recorded


def test_verdict_for_superseded_challenge_leaves_newest_sent(flow, provider, attempt_store, clock):
    flow.send_code(PHONE, "pk_a")
    clock.advance(30)
    flow.send_code(PHONE, "pk_a")
    provider.check_reference = "VE0001"
    checked = flow.check_code(PHONE, "123456", "pk_a")
    # the provider's verdict is still reported
    assert checked.verified
    assert checked.attempt is None
    assert all(a.status == STATUS_SENT for a in attempt_store.all())


def test_verdict_for_newest_challenge_verifies_it(flow, provider, attempt_store, clock):
    flow.send_code(PHONE, "pk_a")
    clock.advance(30)
    flow.send_code(PHONE, "pk_a")
    checked = flow.check_code(PHONE, "123456", "pk_a")
    assert checked.attempt.provider_reference == "VE0002"
    by_ref = {a.provider_reference: a.status for a in attempt_store.all()}
    assert by_ref == {"VE0001": STATUS_SENT, "VE0002": STATUS_VERIFIED}
