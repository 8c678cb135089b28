from __future__ import annotations

import logging
import time
from typing import Callable

from .attempts import STATUS_EXPIRED, STATUS_SENT, STATUS_VERIFIED, AttemptStore, OtpAttempt

logger = logging.getLogger(__name__)


class SessionTracker:
    """Audit log of OTP sends and their outcomes.

    Per ``(phone, credential_key)`` only the newest ``sent`` attempt is live;
    older ones stay ``sent`` as history. The provider decides whether a code
    is correct, so every method here is best-effort: storage failures are
    logged and reported as ``None``, never raised.
    """

    def __init__(self, store: AttemptStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def record_send(self, phone: str, credential_key: str, provider_reference: str | None) -> OtpAttempt | None:
        attempt = OtpAttempt(
            phone=phone,
            credential_key=credential_key,
            provider_reference=provider_reference,
            status=STATUS_SENT,
            created_at=self.clock(),
        )
        try:
            return self.store.add(attempt)
        except Exception:  # noqa: BLE001 - the code was already sent
            logger.exception("could not record OTP send for %s", phone)
            return None

    def latest_sent(self, phone: str, credential_key: str) -> OtpAttempt | None:
        rows = self.store.find(phone=phone, credential_key=credential_key, status=STATUS_SENT)
        if not rows:
            return None
        return max(rows, key=lambda a: a.created_at or 0.0)

    def record_verification(
        self,
        phone: str,
        credential_key: str,
        approved: bool,
        provider_reference: str | None = None,
    ) -> OtpAttempt | None:
        """Mark the live attempt verified when ``approved``.

        A denied outcome leaves the attempt ``sent`` so the user can retry
        against the same challenge. When ``provider_reference`` is given it
        must match the live attempt; a verdict for a superseded challenge is
        ignored.
        """
        try:
            live = self.latest_sent(phone, credential_key)
        except Exception:  # noqa: BLE001
            logger.exception("could not load OTP attempts for %s", phone)
            return None
        if live is None:
            logger.info("no pending OTP attempt for %s; nothing to record", phone)
            return None
        if provider_reference and live.provider_reference and live.provider_reference != provider_reference:
            logger.info("verdict for %s targets superseded challenge %s", phone, provider_reference)
            return None
        if not approved:
            return live
        now = self.clock()
        try:
            self.store.set_status(live.id, STATUS_VERIFIED, verified_at=now)
        except Exception:  # noqa: BLE001
            logger.exception("could not mark OTP attempt %s verified", live.id)
            return None
        live.status, live.verified_at = STATUS_VERIFIED, now
        return live

    def expire_stale(self, max_age_seconds: float, phone: str | None = None) -> int:
        """Move ``sent`` attempts older than ``max_age_seconds`` to ``expired``.

        Returns how many attempts changed.
        """
        cutoff = self.clock() - max_age_seconds
        filters = {"status": STATUS_SENT}
        if phone:
            filters["phone"] = phone
        changed = 0
        for attempt in self.store.find(**filters):
            if attempt.created_at and attempt.created_at < cutoff:
                self.store.set_status(attempt.id, STATUS_EXPIRED)
                changed += 1
        if changed:
            logger.info("expired %d stale OTP attempts", changed)
        return changed
