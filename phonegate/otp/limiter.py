"""Sliding-window limits on OTP sends.

Within any trailing window (one hour by default) a phone number may receive
at most 3 codes and a credential may request at most 10, counted from
attempts still in ``sent`` status.

Reads use equality filters only (``phone``/``credential_key`` plus
``status``); the time filter and the count happen here, so no composite
index is needed on the backing store.

Counts come from an unisolated snapshot: two simultaneous requests can both
see "2 of 3" and both proceed. The limiter is a deterrent, not a quota.

When a read fails the default policy is to fail open and permit the send.
This trades strictness for availability: while the store is degraded an
abuser is limited only by the OTP provider's own throttling. Setting
``fail_open=False`` selects the stricter alternative, which denies sends
until the store answers again.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from .attempts import STATUS_SENT, AttemptStore

logger = logging.getLogger(__name__)

SCOPE_PHONE = "phone"
SCOPE_CREDENTIAL = "credential"


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: int = 3600
    per_phone: int = 3
    per_credential: int = 10
    fail_open: bool = True


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    reason: str | None = None
    retry_after_seconds: int | None = None
    scope: str | None = None
    degraded: bool = False


_REASONS = {
    SCOPE_PHONE: "Maximum {limit} SMS requests per phone number per hour",
    SCOPE_CREDENTIAL: "Maximum {limit} SMS requests per API key per hour",
}


def minutes_until(reset_at: float, now: float) -> int:
    return max(1, math.ceil((reset_at - now) / 60.0))


class OtpRateLimiter:
    def __init__(
        self,
        store: AttemptStore,
        policy: RateLimitPolicy | None = None,
        clock: Callable[[], float] = time.time,
        on_degraded: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.policy = policy or RateLimitPolicy()
        self.clock = clock
        self.on_degraded = on_degraded

    def check_allowed(self, phone: str, credential_key: str) -> RateDecision:
        now = self.clock()
        degraded = False
        checks = (
            (SCOPE_PHONE, {"phone": phone}, self.policy.per_phone),
            (SCOPE_CREDENTIAL, {"credential_key": credential_key}, self.policy.per_credential),
        )
        for scope, equals, limit in checks:
            try:
                recent = self._recent_sent(equals, now)
            except Exception as e:  # noqa: BLE001 - any read failure takes the degraded path
                degraded = True
                logger.error("OTP rate limit read failed for %s scope: %s", scope, e)
                if self.on_degraded is not None:
                    self.on_degraded(scope)
                if not self.policy.fail_open:
                    return RateDecision(
                        allowed=False,
                        reason="Rate limit could not be checked. Please try again later.",
                        retry_after_seconds=60,
                        scope=scope,
                        degraded=True,
                    )
                continue
            if len(recent) >= limit:
                return self._deny(scope, limit, recent, now)
        return RateDecision(allowed=True, degraded=degraded)

    def _recent_sent(self, equals: dict, now: float) -> list[float]:
        cutoff = now - self.policy.window_seconds
        rows = self.store.find(status=STATUS_SENT, **equals)
        return sorted(a.created_at for a in rows if a.created_at and a.created_at >= cutoff)

    def _deny(self, scope: str, limit: int, recent: list[float], now: float) -> RateDecision:
        reset_at = recent[0] + self.policy.window_seconds
        minutes = minutes_until(reset_at, now)
        reason = (
            f"Rate limit exceeded: {_REASONS[scope].format(limit=limit)}. "
            f"You can try again in approximately {minutes} minute(s)."
        )
        return RateDecision(allowed=False, reason=reason, retry_after_seconds=minutes * 60, scope=scope)
