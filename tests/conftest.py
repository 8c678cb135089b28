# Ensure repository root is on sys.path for direct test execution without editable install.
import pathlib
import sys

root = pathlib.Path(__file__).resolve().parent.parent
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

import pytest  # noqa: E402

from phonegate.adapters.twilio_verify import ChallengeChecked, ChallengeSent  # noqa: E402
from phonegate.core.credentials import InMemoryCredentialStore  # noqa: E402
from phonegate.core.issuer import CredentialIssuer  # noqa: E402
from phonegate.core.pipeline import Verification  # noqa: E402
from phonegate.otp.attempts import InMemoryAttemptStore  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVerifier:
    """Answers from a dict of order_id -> order document."""

    def __init__(self, orders=None, error=None):
        self.orders = dict(orders or {})
        self.error = error
        self.calls = []

    def verify(self, order_id):
        self.calls.append(order_id)
        if self.error is not None:
            raise self.error
        order = self.orders.get(order_id)
        if order is None:
            return Verification(verified=False, status="NOT_FOUND")
        status = order.get("status")
        return Verification(verified=status in {"COMPLETED", "APPROVED"}, status=status, order=order)


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send_welcome(self, to_email, credential, name=None):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((to_email, credential.key, name))
        return True


class FakeOtpProvider:
    def __init__(self, approve_codes=("123456",)):
        self.approve_codes = set(approve_codes)
        self.sent = []
        self.checked = []
        self.error = None
        self.check_reference = None

    def send(self, phone, channel="sms"):
        if self.error is not None:
            raise self.error
        ref = f"VE{len(self.sent) + 1:04d}"
        self.sent.append((phone, channel, ref))
        return ChallengeSent(reference=ref, status="pending")

    def check(self, phone, code):
        if self.error is not None:
            raise self.error
        self.checked.append((phone, code))
        ok = code in self.approve_codes
        # the provider answers for its newest challenge unless told otherwise
        ref = self.check_reference
        if ref is None:
            refs = [r for p, _, r in self.sent if p == phone]
            ref = refs[-1] if refs else None
        return ChallengeChecked(approved=ok, status="approved" if ok else "pending", reference=ref)


class FlakyAttemptStore(InMemoryAttemptStore):
    """Attempt store whose reads can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False

    def find(self, **equals):
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        return super().find(**equals)

    def add(self, attempt):
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        return super().add(attempt)


def paid_order(order_id="ORDER-1", status="COMPLETED", plan="pro", email="ada@example.com", name="Ada Lovelace"):
    import json

    return {
        "id": order_id,
        "status": status,
        "purchase_units": [
            {"custom_id": json.dumps({"name": name, "email": email, "plan": plan})}
        ],
        "payer": {"email_address": email, "name": {"given_name": "Ada", "surname": "Lovelace"}},
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def attempt_store():
    return FlakyAttemptStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def issuer(credential_store, notifier, clock):
    return CredentialIssuer(credential_store, notifier=notifier, clock=clock)
