from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from ..core.errors import ProviderError

logger = logging.getLogger(__name__)

# Twilio error code -> provider error code, per call
SEND_ERRORS = {
    60200: "invalid_destination",  # invalid parameter (usually the "to" number)
    60203: "provider_rate_limited",  # max send attempts reached
    60205: "invalid_destination",  # SMS not supported by landline
    20429: "provider_rate_limited",
    20003: "auth_misconfigured",
    20404: "auth_misconfigured",  # verify service sid not found
}
CHECK_ERRORS = {
    20404: "unknown_challenge",  # no pending verification (expired, approved or deleted)
    60202: "provider_rate_limited",  # max check attempts reached
    60200: "invalid_destination",
    20429: "provider_rate_limited",
    20003: "auth_misconfigured",
}


@dataclass(frozen=True)
class ChallengeSent:
    reference: str
    status: str


@dataclass(frozen=True)
class ChallengeChecked:
    approved: bool
    status: str
    reference: str | None = None


def _translate(e: TwilioRestException, table: dict[int, str]) -> ProviderError:
    code = table.get(e.code or 0, "provider_error")
    return ProviderError(code, e.msg or str(e), provider_code=e.code)


class TwilioVerifyProvider:
    """OTP provider backed by a Twilio Verify service.

    Twilio owns code generation and correctness; this class only forwards
    the challenge and maps Twilio failures onto ``ProviderError`` codes.
    """

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        service_sid: str | None,
        client: Any = None,
    ):
        if not service_sid:
            raise ProviderError("auth_misconfigured", "TWILIO_VERIFY_SERVICE is not configured")
        if client is None:
            if not (account_sid and auth_token):
                raise ProviderError("auth_misconfigured", "TWILIO_SID or TWILIO_AUTH_TOKEN is not configured")
            client = Client(account_sid, auth_token)
        self._client = client
        self.service_sid = service_sid

    def _service(self):
        return self._client.verify.v2.services(self.service_sid)

    def send(self, phone: str, channel: str = "sms") -> ChallengeSent:
        try:
            v = self._service().verifications.create(to=phone, channel=channel)
        except TwilioRestException as e:
            logger.error("Twilio send error %s: %s", e.code, e.msg)
            raise _translate(e, SEND_ERRORS) from e
        except TwilioException as e:
            raise ProviderError("provider_error", str(e)) from e
        return ChallengeSent(reference=v.sid, status=v.status)

    def check(self, phone: str, code: str) -> ChallengeChecked:
        try:
            vc = self._service().verification_checks.create(to=phone, code=code)
        except TwilioRestException as e:
            logger.warning("Twilio check error %s: %s", e.code, e.msg)
            raise _translate(e, CHECK_ERRORS) from e
        except TwilioException as e:
            raise ProviderError("provider_error", str(e)) from e
        return ChallengeChecked(approved=vc.status == "approved", status=vc.status, reference=getattr(vc, "sid", None))
