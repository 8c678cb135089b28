from .core import CredentialIssuer, PaymentPipeline, normalize  # noqa: F401
from .otp import OtpRateLimiter, SessionTracker, VerificationFlow  # noqa: F401

__all__ = [
    "CredentialIssuer",
    "PaymentPipeline",
    "normalize",
    "OtpRateLimiter",
    "SessionTracker",
    "VerificationFlow",
]
__version__ = "0.1.0"
