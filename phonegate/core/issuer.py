from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from .credentials import (
    SOURCE_EMAIL,
    SOURCE_ORDER,
    Credential,
    CredentialStore,
    generate_api_key,
)
from .errors import DuplicateCredential, StorageDegraded, ValidationError
from .events import FALLBACK_NAME, PaymentEvent
from .plans import DEFAULT_PAID_PLAN, FREE_PLAN, PLAN_CATALOG, Plan, get_plan, resolve_plan

logger = logging.getLogger(__name__)


class WelcomeNotifier(Protocol):
    def send_welcome(self, to_email: str, credential: Credential, name: str | None = None) -> bool:
        ...


@dataclass
class Issuance:
    credential: Credential
    created: bool
    notified: bool = False

    @property
    def replayed(self) -> bool:
        return not self.created


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


class CredentialIssuer:
    """Issue at most one credential per source identity.

    Paid credentials are keyed by order id, free ones by lower-cased email.
    The lookup before the write is advisory: two racing deliveries can both
    miss it, and then the store's uniqueness constraint decides. The loser
    gets the winner's record back. On a store without that constraint the
    race can produce two credentials for one source.
    """

    def __init__(
        self,
        store: CredentialStore,
        notifier: WelcomeNotifier | None = None,
        default_plan: str = DEFAULT_PAID_PLAN,
        key_prefix: str = "pk_",
        clock: Callable[[], float] = time.time,
    ):
        if default_plan not in PLAN_CATALOG:
            raise ValueError(f"unknown default plan {default_plan!r}")
        self.store = store
        self.notifier = notifier
        self.default_plan = default_plan
        self.key_prefix = key_prefix
        self.clock = clock

    def lookup(self, source_identity: str) -> Credential | None:
        # StorageDegraded propagates: an unreadable store means "unknown", not "absent"
        return self.store.get_by_source(source_identity)

    def issue(self, event: PaymentEvent) -> Credential:
        return self.provision(event).credential

    def provision(self, event: PaymentEvent) -> Issuance:
        if not event.order_id:
            raise ValidationError("payment event has no order id")
        existing = self.lookup(event.order_id)
        if existing is not None:
            logger.info("order %s already has a credential; replay", event.order_id)
            return Issuance(existing, created=False)
        plan = resolve_plan(event.plan_hint, self.default_plan)
        if event.plan_hint and get_plan(event.plan_hint) is None:
            logger.warning("unknown plan hint %r for order %s; using %s", event.plan_hint, event.order_id, plan.id)
        now = self.clock()
        cred = self._new_credential(
            source_identity=event.order_id,
            source_kind=SOURCE_ORDER,
            plan=plan,
            email=normalize_email(event.email) or None,
            name=event.name if event.name != FALLBACK_NAME else None,
            now=now,
            paid_at=now,
        )
        return self._persist(cred)

    def issue_free(self, email: str, name: str | None = None) -> Credential:
        return self.provision_free(email, name).credential

    def provision_free(self, email: str, name: str | None = None, plan_id: str = FREE_PLAN) -> Issuance:
        source = normalize_email(email)
        if not source:
            raise ValidationError("email is required")
        existing = self.lookup(source)
        if existing is not None:
            return Issuance(existing, created=False)
        plan = get_plan(plan_id)
        if plan is None:
            raise ValidationError(f"unknown plan {plan_id!r}")
        cred = self._new_credential(
            source_identity=source,
            source_kind=SOURCE_EMAIL,
            plan=plan,
            email=source,
            name=name,
            now=self.clock(),
            paid_at=None,
        )
        return self._persist(cred)

    def _new_credential(
        self,
        source_identity: str,
        source_kind: str,
        plan: Plan,
        email: str | None,
        name: str | None,
        now: float,
        paid_at: float | None,
    ) -> Credential:
        return Credential(
            key=generate_api_key(self.key_prefix),
            source_identity=source_identity,
            source_kind=source_kind,
            plan=plan.id,
            plan_name=plan.name,
            requests_limit=plan.requests_limit,
            requests_used=0,
            email=email,
            name=name,
            created_at=now,
            paid_at=paid_at,
        )

    def _persist(self, cred: Credential) -> Issuance:
        try:
            self.store.create(cred)
        except DuplicateCredential as dup:
            winner = dup.existing or self.store.get_by_source(cred.source_identity)
            if winner is None:
                raise StorageDegraded(
                    f"credential for {cred.source_identity} exists but could not be read back"
                ) from dup
            logger.info("lost issuance race for %s; returning stored credential", cred.source_identity)
            return Issuance(winner, created=False)
        logger.info("issued %s credential for %s (%s)", cred.plan, cred.source_kind, cred.source_identity)
        notified = self._notify(cred)
        return Issuance(cred, created=True, notified=notified)

    def _notify(self, cred: Credential) -> bool:
        if not cred.email:
            logger.info("no email for %s; skipping welcome notification", cred.source_identity)
            return False
        if self.notifier is None:
            return False
        try:
            return bool(self.notifier.send_welcome(cred.email, cred, cred.name))
        except Exception:  # noqa: BLE001 - the credential is already durable
            logger.exception("welcome notification to %s failed", cred.email)
            return False

    def change_plan(self, key: str, plan_id: str) -> Credential | None:
        plan = get_plan(plan_id)
        if plan is None:
            raise ValidationError(f"unknown plan {plan_id!r}")
        return self.store.update_plan(key, plan.id, plan.name, plan.requests_limit)
