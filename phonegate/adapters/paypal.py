from __future__ import annotations

import json
import logging
import secrets
from typing import Any

import httpx

from ..core.errors import ProcessorUnavailable, ValidationError
from ..core.pipeline import PAID_STATUSES, Verification

logger = logging.getLogger(__name__)

LIVE_BASE_URL = "https://api-m.paypal.com"
SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"

PLAN_DESCRIPTIONS = {
    "standard": "Phone Validation API - Standard Plan (1,000 requests/month)",
    "pro": "Phone Validation API - Pro Plan (10,000 requests/month)",
}


def base_url_for_mode(mode: str | None) -> str:
    return LIVE_BASE_URL if (mode or "live").lower() == "live" else SANDBOX_BASE_URL


class PayPalClient:
    """Minimal PayPal Orders v2 client.

    Every call exchanges the client credentials for a bearer token first; no
    token is cached so the instance stays immutable and shareable.
    Transport failures, non-2xx token responses and 5xx order responses raise
    ``ProcessorUnavailable`` so callers can tell "could not check" apart from
    "not paid".
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        mode: str = "live",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client_id = client_id or ""
        self.client_secret = client_secret or ""
        self.base_url = base_url_for_mode(mode)
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _http(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    def access_token(self, http: httpx.Client) -> str:
        if not self.configured:
            raise ProcessorUnavailable("PayPal credentials are not configured")
        try:
            r = http.post(
                "/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ProcessorUnavailable(f"PayPal token request failed: {e}") from e
        if r.status_code != 200:
            raise ProcessorUnavailable(f"PayPal authentication failed ({r.status_code})")
        token = self._json(r).get("access_token")
        if not token:
            raise ProcessorUnavailable("PayPal returned no access token")
        return token

    def _call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        with self._http() as http:
            token = self.access_token(http)
            headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
            headers.update(kwargs.pop("headers", {}) or {})
            try:
                return http.request(method, path, headers=headers, **kwargs)
            except httpx.HTTPError as e:
                raise ProcessorUnavailable(f"PayPal request {method} {path} failed: {e}") from e

    @staticmethod
    def _json(r: httpx.Response) -> dict:
        try:
            data = r.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def get_order(self, order_id: str) -> dict | None:
        r = self._call("GET", f"/v2/checkout/orders/{order_id}")
        if r.status_code == 404:
            return None
        if r.status_code >= 500 or r.status_code in (401, 403):
            raise ProcessorUnavailable(f"PayPal order lookup failed ({r.status_code})")
        if r.status_code != 200:
            return {"status": f"HTTP_{r.status_code}"}
        return self._json(r)

    def verify(self, order_id: str) -> Verification:
        order = self.get_order(order_id)
        if order is None:
            logger.info("PayPal has no order %s", order_id)
            return Verification(verified=False, status="NOT_FOUND")
        status = order.get("status")
        status = status if isinstance(status, str) else None
        return Verification(verified=status in PAID_STATUSES, status=status, order=order)

    def create_order(
        self,
        name: str,
        email: str,
        plan: str = "pro",
        amount: str = "10.00",
        currency: str = "USD",
        return_url: str | None = None,
        cancel_url: str | None = None,
    ) -> dict:
        if not name or not email:
            raise ValidationError("name and email are required")
        body: dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {"currency_code": currency, "value": amount},
                    "description": PLAN_DESCRIPTIONS.get(plan, PLAN_DESCRIPTIONS["standard"]),
                    "custom_id": json.dumps({"name": name, "email": email, "plan": plan}),
                }
            ],
            "application_context": {
                "brand_name": "Phone Validation API",
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
            },
        }
        if return_url:
            body["application_context"]["return_url"] = return_url
        if cancel_url:
            body["application_context"]["cancel_url"] = cancel_url
        r = self._call(
            "POST", "/v2/checkout/orders", json=body, headers={"PayPal-Request-Id": secrets.token_hex(16)}
        )
        if r.status_code not in (200, 201):
            raise ProcessorUnavailable(self._json(r).get("message") or f"PayPal order creation failed ({r.status_code})")
        return self._json(r)

    def capture_order(self, order_id: str) -> dict:
        r = self._call("POST", f"/v2/checkout/orders/{order_id}/capture")
        if r.status_code in (200, 201):
            return self._json(r)
        if r.status_code >= 500:
            raise ProcessorUnavailable(f"PayPal capture failed ({r.status_code})")
        raise ValidationError(self._json(r).get("message") or f"PayPal capture rejected ({r.status_code})", order_id=order_id)

    def verify_webhook_signature(self, webhook_id: str, headers: dict[str, str], event: dict) -> bool:
        """Ask PayPal whether ``event`` was signed for ``webhook_id``."""
        lower = {k.lower(): v for k, v in headers.items()}
        body = {
            "auth_algo": lower.get("paypal-auth-algo"),
            "cert_url": lower.get("paypal-cert-url"),
            "transmission_id": lower.get("paypal-transmission-id"),
            "transmission_sig": lower.get("paypal-transmission-sig"),
            "transmission_time": lower.get("paypal-transmission-time"),
            "webhook_id": webhook_id,
            "webhook_event": event,
        }
        if not all(body[k] for k in ("auth_algo", "cert_url", "transmission_id", "transmission_sig", "transmission_time")):
            return False
        r = self._call("POST", "/v1/notifications/verify-webhook-signature", json=body)
        if r.status_code >= 500:
            raise ProcessorUnavailable(f"PayPal signature check failed ({r.status_code})")
        return self._json(r).get("verification_status") == "SUCCESS"

    def create_webhook(self, url: str, event_types: list[str]) -> dict:
        body = {"url": url, "event_types": [{"name": e} for e in event_types]}
        r = self._call("POST", "/v1/notifications/webhooks", json=body)
        if r.status_code not in (200, 201):
            raise ProcessorUnavailable(self._json(r).get("message") or f"webhook creation failed ({r.status_code})")
        return self._json(r)
