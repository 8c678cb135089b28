from __future__ import annotations

import hashlib
import secrets
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import DuplicateCredential, StorageDegraded

SOURCE_ORDER = "order"
SOURCE_EMAIL = "email"


def generate_api_key(prefix: str = "pk_") -> str:
    # 24 random bytes -> 48 hex chars; prefix makes keys recognizable in logs and configs
    return prefix + secrets.token_hex(24)


@dataclass
class Credential:
    key: str
    source_identity: str
    source_kind: str
    plan: str
    plan_name: str
    requests_limit: int
    requests_used: int = 0
    email: str | None = None
    name: str | None = None
    created_at: float = field(default_factory=time.time)
    paid_at: float | None = None

    @property
    def order_id(self) -> str | None:
        return self.source_identity if self.source_kind == SOURCE_ORDER else None

    @property
    def requests_remaining(self) -> int:
        return max(self.requests_limit - self.requests_used, 0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        return cls(
            key=data["key"],
            source_identity=data["source_identity"],
            source_kind=data.get("source_kind", SOURCE_ORDER),
            plan=data.get("plan", ""),
            plan_name=data.get("plan_name", ""),
            requests_limit=int(data.get("requests_limit", 0)),
            requests_used=int(data.get("requests_used", 0) or 0),
            email=data.get("email"),
            name=data.get("name"),
            created_at=float(data.get("created_at") or 0.0),
            paid_at=float(data["paid_at"]) if data.get("paid_at") is not None else None,
        )


class CredentialStore:
    """Persistence contract for credentials.

    Only equality lookups are assumed: by key and by source identity.
    ``create`` raises ``DuplicateCredential`` when the backend enforces
    uniqueness on the source identity; any other backend failure surfaces
    as ``StorageDegraded``.
    """

    enforces_uniqueness = False

    def get_by_key(self, key: str) -> Credential | None:
        raise NotImplementedError

    def get_by_source(self, source_identity: str) -> Credential | None:
        raise NotImplementedError

    def create(self, credential: Credential) -> Credential:
        raise NotImplementedError

    def add_usage(self, key: str, amount: int = 1) -> Credential | None:
        raise NotImplementedError

    def update_plan(self, key: str, plan: str, plan_name: str, requests_limit: int) -> Credential | None:
        raise NotImplementedError


class InMemoryCredentialStore(CredentialStore):
    """Process-local store.

    ``enforce_unique=False`` drops the source-identity constraint so tests can
    show what happens on backends that do not have one.
    """

    def __init__(self, enforce_unique: bool = True):
        self.enforces_uniqueness = enforce_unique
        self._lock = threading.Lock()
        self._records: list[Credential] = []

    def get_by_key(self, key: str) -> Credential | None:
        with self._lock:
            for rec in self._records:
                if rec.key == key:
                    return rec
        return None

    def get_by_source(self, source_identity: str) -> Credential | None:
        with self._lock:
            for rec in self._records:
                if rec.source_identity == source_identity:
                    return rec
        return None

    def find_all_by_source(self, source_identity: str) -> list[Credential]:
        with self._lock:
            return [r for r in self._records if r.source_identity == source_identity]

    def create(self, credential: Credential) -> Credential:
        with self._lock:
            if any(r.key == credential.key for r in self._records):
                raise StorageDegraded("credential key collision")
            if self.enforces_uniqueness:
                for rec in self._records:
                    if rec.source_identity == credential.source_identity:
                        raise DuplicateCredential(credential.source_identity, existing=rec)
            self._records.append(credential)
        return credential

    def add_usage(self, key: str, amount: int = 1) -> Credential | None:
        with self._lock:
            for rec in self._records:
                if rec.key == key:
                    rec.requests_used += max(int(amount), 0)
                    return rec
        return None

    def update_plan(self, key: str, plan: str, plan_name: str, requests_limit: int) -> Credential | None:
        with self._lock:
            for rec in self._records:
                if rec.key == key:
                    rec.plan, rec.plan_name, rec.requests_limit = plan, plan_name, int(requests_limit)
                    return rec
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def _source_doc_id(source_identity: str) -> str:
    # Firestore document ids may not contain '/', and emails are case-folded upstream
    return hashlib.sha256(source_identity.encode("utf-8")).hexdigest()


class FirestoreCredentialStore(CredentialStore):  # pragma: no cover - external dependency
    """Credentials in a Firestore collection.

    Documents are keyed by a hash of the source identity and written with
    ``create()``, so Firestore itself rejects a second credential for the
    same order or email.
    """

    enforces_uniqueness = True

    def __init__(self, collection: str = "api_keys", client: Any = None):
        from google.cloud import firestore  # type: ignore

        self._firestore = firestore
        self._client = client or firestore.Client()
        self._collection = collection

    def _coll(self):
        return self._client.collection(self._collection)

    def _first(self, field_name: str, value: str) -> tuple[Any, Credential] | None:
        try:
            snaps = list(self._coll().where(field_name, "==", value).limit(1).stream())
        except Exception as e:
            raise StorageDegraded(f"credential lookup by {field_name} failed: {e}") from e
        if not snaps:
            return None
        return snaps[0].reference, Credential.from_dict(snaps[0].to_dict() or {})

    def get_by_key(self, key: str) -> Credential | None:
        found = self._first("key", key)
        return found[1] if found else None

    def get_by_source(self, source_identity: str) -> Credential | None:
        try:
            snap = self._coll().document(_source_doc_id(source_identity)).get()
        except Exception as e:
            raise StorageDegraded(f"credential lookup failed: {e}") from e
        if not snap.exists:
            return None
        return Credential.from_dict(snap.to_dict() or {})

    def create(self, credential: Credential) -> Credential:
        from google.api_core.exceptions import AlreadyExists  # type: ignore

        doc_ref = self._coll().document(_source_doc_id(credential.source_identity))
        try:
            doc_ref.create(credential.to_dict())
        except AlreadyExists as e:
            raise DuplicateCredential(credential.source_identity) from e
        except Exception as e:
            raise StorageDegraded(f"credential write failed: {e}") from e
        return credential

    def add_usage(self, key: str, amount: int = 1) -> Credential | None:
        found = self._first("key", key)
        if not found:
            return None
        ref, cred = found
        try:
            ref.update({"requests_used": self._firestore.Increment(int(amount))})
        except Exception as e:
            raise StorageDegraded(f"usage update failed: {e}") from e
        cred.requests_used += int(amount)
        return cred

    def update_plan(self, key: str, plan: str, plan_name: str, requests_limit: int) -> Credential | None:
        found = self._first("key", key)
        if not found:
            return None
        ref, cred = found
        try:
            ref.update({"plan": plan, "plan_name": plan_name, "requests_limit": int(requests_limit)})
        except Exception as e:
            raise StorageDegraded(f"plan update failed: {e}") from e
        cred.plan, cred.plan_name, cred.requests_limit = plan, plan_name, int(requests_limit)
        return cred
