from __future__ import annotations

import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from ..core.errors import StorageDegraded

STATUS_SENT = "sent"
STATUS_VERIFIED = "verified"
STATUS_EXPIRED = "expired"
TERMINAL_STATUSES = frozenset({STATUS_VERIFIED, STATUS_EXPIRED})


@dataclass
class OtpAttempt:
    phone: str
    credential_key: str
    provider_reference: str | None
    status: str = STATUS_SENT
    created_at: float = field(default_factory=time.time)
    verified_at: float | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any], id: str | None = None) -> "OtpAttempt":
        return cls(
            phone=data.get("phone", ""),
            credential_key=data.get("credential_key", ""),
            provider_reference=data.get("provider_reference"),
            status=data.get("status", STATUS_SENT),
            created_at=float(data.get("created_at") or 0.0),
            verified_at=float(data["verified_at"]) if data.get("verified_at") is not None else None,
            id=id or data.get("id") or uuid.uuid4().hex,
        )


class AttemptStore:
    """Append-only attempt history with equality-filtered reads.

    ``find`` takes field=value filters and nothing else; ordering and time
    windows are the caller's job.
    """

    def add(self, attempt: OtpAttempt) -> OtpAttempt:
        raise NotImplementedError

    def find(self, **equals: Any) -> list[OtpAttempt]:
        raise NotImplementedError

    def set_status(self, attempt_id: str, status: str, verified_at: float | None = None) -> None:
        raise NotImplementedError


class InMemoryAttemptStore(AttemptStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[str, OtpAttempt] = {}

    def add(self, attempt: OtpAttempt) -> OtpAttempt:
        with self._lock:
            self._rows[attempt.id] = attempt
        return attempt

    def find(self, **equals: Any) -> list[OtpAttempt]:
        with self._lock:
            rows = list(self._rows.values())
        return [a for a in rows if all(getattr(a, k) == v for k, v in equals.items())]

    def set_status(self, attempt_id: str, status: str, verified_at: float | None = None) -> None:
        with self._lock:
            row = self._rows.get(attempt_id)
            if row is None:
                raise StorageDegraded(f"attempt {attempt_id} not found")
            row.status = status
            if verified_at is not None:
                row.verified_at = verified_at

    def all(self) -> list[OtpAttempt]:
        with self._lock:
            return list(self._rows.values())


class FirestoreAttemptStore(AttemptStore):  # pragma: no cover - external dependency
    def __init__(self, collection: str = "otp_requests", client: Any = None):
        from google.cloud import firestore  # type: ignore

        self._client = client or firestore.Client()
        self._collection = collection

    def _coll(self):
        return self._client.collection(self._collection)

    def add(self, attempt: OtpAttempt) -> OtpAttempt:
        data = attempt.to_dict()
        data.pop("id", None)
        try:
            self._coll().document(attempt.id).set(data)
        except Exception as e:
            raise StorageDegraded(f"attempt write failed: {e}") from e
        return attempt

    def find(self, **equals: Any) -> list[OtpAttempt]:
        q = self._coll()
        for k, v in equals.items():
            q = q.where(k, "==", v)
        try:
            return [OtpAttempt.from_dict(s.to_dict() or {}, id=s.id) for s in q.stream()]
        except Exception as e:
            raise StorageDegraded(f"attempt query failed: {e}") from e

    def set_status(self, attempt_id: str, status: str, verified_at: float | None = None) -> None:
        fields: dict[str, Any] = {"status": status}
        if verified_at is not None:
            fields["verified_at"] = verified_at
        try:
            self._coll().document(attempt_id).update(fields)
        except Exception as e:
            raise StorageDegraded(f"attempt update failed: {e}") from e
