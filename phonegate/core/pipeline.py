from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import PaymentRejected, ValidationError
from .events import PaymentEvent, merge_order_details, normalize
from .issuer import CredentialIssuer, Issuance

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"COMPLETED", "APPROVED"})


@dataclass
class Verification:
    verified: bool
    status: str | None
    order: dict[str, Any] = field(default_factory=dict)


class PaymentVerifier(Protocol):
    def verify(self, order_id: str) -> Verification:
        """Return the processor's verdict; raise ProcessorUnavailable if it cannot be reached."""
        ...


class PaymentPipeline:
    """Normalizer -> replay check -> Verifier -> Issuer."""

    def __init__(self, verifier: PaymentVerifier, issuer: CredentialIssuer):
        self.verifier = verifier
        self.issuer = issuer

    def process(self, raw: Any) -> Issuance:
        return self.process_event(normalize(raw))

    def process_event(self, event: PaymentEvent) -> Issuance:
        if not event.order_id:
            if event.event_type:
                raise ValidationError(f"event type {event.event_type} is not a completed payment", event_type=event.event_type)
            raise ValidationError("order id is required")
        # a replay never reaches the processor
        existing = self.issuer.lookup(event.order_id)
        if existing is not None:
            return Issuance(existing, created=False)
        verification = self.verifier.verify(event.order_id)
        if not verification.verified:
            logger.info("order %s not paid (status=%s)", event.order_id, verification.status)
            raise PaymentRejected(
                "order status is not COMPLETED or APPROVED", status=verification.status, order_id=event.order_id
            )
        return self.issuer.provision(merge_order_details(event, verification.order))
