from .credentials import Credential, CredentialStore, InMemoryCredentialStore, generate_api_key  # noqa: F401
from .errors import (  # noqa: F401
    AuthenticationError,
    DuplicateCredential,
    PaymentRejected,
    PhonegateError,
    ProcessorUnavailable,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    StorageDegraded,
    ValidationError,
)
from .events import PaymentEvent, merge_order_details, normalize  # noqa: F401
from .issuer import CredentialIssuer, Issuance  # noqa: F401
from .pipeline import PaymentPipeline, Verification  # noqa: F401
from .plans import PLAN_CATALOG, Plan, get_plan, resolve_plan  # noqa: F401
