from .attempts import (  # noqa: F401
    STATUS_EXPIRED,
    STATUS_SENT,
    STATUS_VERIFIED,
    AttemptStore,
    InMemoryAttemptStore,
    OtpAttempt,
)
from .flow import CheckResult, SendResult, VerificationFlow  # noqa: F401
from .limiter import OtpRateLimiter, RateDecision, RateLimitPolicy  # noqa: F401
from .tracker import SessionTracker  # noqa: F401
