from __future__ import annotations

import threading

import pytest
from conftest import FakeNotifier

from phonegate.core.credentials import Credential, InMemoryCredentialStore
from phonegate.core.errors import StorageDegraded, ValidationError
from phonegate.core.events import PaymentEvent
from phonegate.core.issuer import CredentialIssuer


def test_issue_creates_credential_on_hinted_plan(issuer, credential_store, notifier, clock):
    ev = PaymentEvent(order_id="O-1", email="Ada@Example.com", name="Ada", plan_hint="pro")
    result = issuer.provision(ev)
    cred = result.credential
    assert result.created and not result.replayed
    assert cred.key.startswith("pk_") and len(cred.key) == 3 + 48
    assert (cred.plan, cred.plan_name, cred.requests_limit) == ("pro", "Pro", 10000)
    assert cred.requests_used == 0
    assert cred.email == "ada@example.com"
    assert cred.order_id == "O-1"
    assert cred.paid_at == clock.now
    assert notifier.sent == [("ada@example.com", cred.key, "Ada")]
    assert len(credential_store) == 1


def test_replay_returns_same_key_without_notifying_again(issuer, credential_store, notifier):
    ev = PaymentEvent(order_id="O-1", email="ada@example.com", plan_hint="pro")
    first = issuer.issue(ev)
    second = issuer.provision(ev)
    assert second.replayed
    assert second.credential.key == first.key
    assert len(credential_store) == 1
    assert len(notifier.sent) == 1


def test_unknown_plan_hint_uses_default(issuer):
    cred = issuer.issue(PaymentEvent(order_id="O-2", plan_hint="platinum"))
    assert cred.plan == "standard"
    assert cred.requests_limit == 1000


def test_missing_order_id_is_rejected(issuer):
    with pytest.raises(ValidationError):
        issuer.provision(PaymentEvent())


def test_no_email_skips_notification(issuer, notifier):
    result = issuer.provision(PaymentEvent(order_id="O-3"))
    assert result.created
    assert not result.notified
    assert notifier.sent == []


def test_notifier_failure_does_not_undo_issuance(credential_store, clock):
    issuer = CredentialIssuer(credential_store, notifier=FakeNotifier(fail=True), clock=clock)
    result = issuer.provision(PaymentEvent(order_id="O-4", email="x@example.com"))
    assert result.created
    assert result.notified is False
    assert credential_store.get_by_source("O-4").key == result.credential.key


def test_free_key_is_keyed_by_lowercased_email(issuer, credential_store):
    first = issuer.provision_free("  Bob@Example.COM ")
    again = issuer.provision_free("bob@example.com")
    assert first.created and again.replayed
    assert first.credential.key == again.credential.key
    assert (first.credential.plan_name, first.credential.requests_limit) == ("Free", 7)
    assert first.credential.paid_at is None
    assert len(credential_store) == 1


def test_free_key_requires_email(issuer):
    with pytest.raises(ValidationError):
        issuer.provision_free("   ")


def test_change_plan(issuer):
    cred = issuer.issue_free("c@example.com")
    updated = issuer.change_plan(cred.key, "pro")
    assert updated.plan == "pro" and updated.requests_limit == 10000
    with pytest.raises(ValidationError):
        issuer.change_plan(cred.key, "gold")
    assert issuer.change_plan("pk_missing", "pro") is None


def _race(issuer, n=8):
    barrier = threading.Barrier(n)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        r = issuer.provision(PaymentEvent(order_id="O-RACE", email="r@example.com"))
        with lock:
            results.append(r)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class SlowLookupStore(InMemoryCredentialStore):
    """Widens the lookup/create gap so concurrent deliveries all miss the lookup."""

    def __init__(self, n, enforce_unique=True):
        super().__init__(enforce_unique=enforce_unique)
        self._gate = threading.Barrier(n)

    def get_by_source(self, source_identity):
        found = super().get_by_source(source_identity)
        if found is None:
            try:
                self._gate.wait(timeout=2)
            except threading.BrokenBarrierError:
                pass
        return found


def test_concurrent_deliveries_yield_one_credential():
    store = SlowLookupStore(8)
    issuer = CredentialIssuer(store)
    results = _race(issuer, 8)
    keys = {r.credential.key for r in results}
    assert len(keys) == 1
    assert sum(r.created for r in results) == 1
    assert len(store.find_all_by_source("O-RACE")) == 1


def test_store_without_uniqueness_can_issue_duplicates():
    store = SlowLookupStore(4, enforce_unique=False)
    issuer = CredentialIssuer(store)
    results = _race(issuer, 4)
    # every racer missed the lookup and nothing stopped the writes
    assert len(store.find_all_by_source("O-RACE")) == 4
    assert len({r.credential.key for r in results}) == 4


class BrokenStore(InMemoryCredentialStore):
    def get_by_source(self, source_identity):
        raise StorageDegraded("read failed")


def test_lookup_failure_propagates():
    issuer = CredentialIssuer(BrokenStore())
    with pytest.raises(StorageDegraded):
        issuer.provision(PaymentEvent(order_id="O-5"))


def test_credential_dict_round_trip():
    cred = Credential(
        key="pk_x", source_identity="O-1", source_kind="order", plan="pro", plan_name="Pro", requests_limit=10000
    )
    assert Credential.from_dict(cred.to_dict()) == cred


def test_store_len_is_consistent_under_concurrent_issuance(issuer, credential_store):
    n = 8
    barrier = threading.Barrier(n + 1)
    sizes = []

    def worker(i):
        barrier.wait()
        issuer.provision(PaymentEvent(order_id=f"O-LEN-{i}", email=f"u{i}@example.com"))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    barrier.wait()
    while any(t.is_alive() for t in threads):
        sizes.append(len(credential_store))
    for t in threads:
        t.join()
    assert all(0 <= s <= n for s in sizes)
    assert sizes == sorted(sizes)
    assert len(credential_store) == n
