from __future__ import annotations

from typing import Any


class PhonegateError(Exception):
    """Base class for every error the core surfaces to callers.

    ``kind`` is a stable identifier safe to expose in API responses;
    ``status_code`` is the HTTP status the service maps it to.
    """

    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.kind, "message": self.message}
        out.update({k: v for k, v in self.details.items() if v is not None})
        return out


class ValidationError(PhonegateError):
    kind = "validation_error"
    status_code = 400


class AuthenticationError(PhonegateError):
    kind = "invalid_api_key"
    status_code = 401


class PaymentRejected(PhonegateError):
    """The processor answered, and the order is not in a paid state."""

    kind = "payment_rejected"
    status_code = 400

    def __init__(self, message: str = "", status: str | None = None, **details: Any):
        super().__init__(message or "payment not verified", status=status, **details)
        self.status = status


class ProcessorUnavailable(PhonegateError):
    """The processor could not be reached or refused our credentials."""

    kind = "processor_unavailable"
    status_code = 502


# provider error codes -> HTTP status
PROVIDER_ERROR_STATUS = {
    "unknown_challenge": 404,
    "provider_rate_limited": 429,
    "invalid_destination": 400,
    "auth_misconfigured": 500,
    "provider_error": 502,
}


class ProviderError(PhonegateError):
    kind = "provider_error"

    def __init__(self, code: str, message: str = "", provider_code: int | None = None):
        super().__init__(message or code, code=code, provider_code=provider_code)
        self.code = code
        self.provider_code = provider_code

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return PROVIDER_ERROR_STATUS.get(self.code, 502)


class RateLimited(PhonegateError):
    kind = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "", retry_after_seconds: int | None = None, scope: str | None = None):
        super().__init__(message or "rate limit exceeded", retry_after_seconds=retry_after_seconds, scope=scope)
        self.retry_after_seconds = retry_after_seconds
        self.scope = scope


class QuotaExceeded(PhonegateError):
    kind = "quota_exceeded"
    status_code = 429


class StorageDegraded(PhonegateError):
    kind = "storage_degraded"
    status_code = 503


class DuplicateCredential(PhonegateError):
    """Raised by a store when a credential for the source identity already exists.

    ``existing`` is the stored record when the store could read it back.
    """

    kind = "duplicate_credential"
    status_code = 409

    def __init__(self, source_identity: str, existing: Any = None):
        super().__init__(f"credential already exists for {source_identity}")
        self.source_identity = source_identity
        self.existing = existing
