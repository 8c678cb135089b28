"""Payment notification normalization.

Inbound payment payloads arrive in several shapes:

``capture``
    The order/capture document PayPal returns from the orders API: an ``id``,
    ``purchase_units`` and ``payer``. Customer details are round-tripped in
    the purchase unit's ``custom_id`` as a JSON blob ``{name, email, plan}``.
``webhook``
    A PayPal webhook envelope: ``event_type`` plus a ``resource`` holding an
    order (``CHECKOUT.ORDER.APPROVED``) or a capture
    (``PAYMENT.CAPTURE.COMPLETED``). Other event types are not interpreted.
``direct``
    A flat ``{orderId, email, name, plan}`` object posted by our own checkout
    page after approval.

Every shape reduces to one :class:`PaymentEvent`. Normalization is pure and
never raises; a payload nobody recognizes yields an event without an order id,
which callers must reject.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any

logger = logging.getLogger(__name__)

FALLBACK_NAME = "Customer"

SHAPE_CAPTURE = "capture"
SHAPE_WEBHOOK = "webhook"
SHAPE_DIRECT = "direct"
SHAPE_UNKNOWN = "unknown"

ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
INTERPRETED_EVENT_TYPES = frozenset({ORDER_APPROVED, CAPTURE_COMPLETED})


@dataclass(frozen=True)
class PaymentEvent:
    order_id: str | None = None
    email: str | None = None
    name: str = FALLBACK_NAME
    plan_hint: str | None = None
    # diagnostics only; two events describing the same payment compare equal
    shape: str = field(default=SHAPE_UNKNOWN, compare=False)
    event_type: str | None = field(default=None, compare=False)
    event_id: str | None = field(default=None, compare=False)

    @property
    def is_actionable(self) -> bool:
        return bool(self.order_id)


def _text(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def parse_custom_blob(raw: Any) -> dict:
    """Decode the opaque ``custom_id`` metadata; malformed input yields ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.debug("ignoring malformed custom_id metadata")
        return {}
    return data if isinstance(data, dict) else {}


def _first_purchase_unit(container: dict) -> dict:
    units = container.get("purchase_units")
    if isinstance(units, list) and units:
        return _dict(units[0])
    return {}


def _payer_name(payer: dict) -> str | None:
    name = _dict(payer.get("name"))
    given = _text(name.get("given_name")) or ""
    family = _text(name.get("surname")) or _text(name.get("family_name")) or ""
    return _text(f"{given} {family}")


def _from_order_like(container: dict, custom_source: dict | None = None) -> dict[str, Any]:
    """Extract email/name/plan from an order or capture document.

    Resolution order for email: custom blob, payer email, payee email.
    For name: custom blob, payer given+family name, ``FALLBACK_NAME``.
    """
    unit = _first_purchase_unit(container)
    custom_raw = unit.get("custom_id")
    if custom_raw is None and custom_source is not None:
        custom_raw = custom_source.get("custom_id")
    blob = parse_custom_blob(custom_raw)
    payer = _dict(container.get("payer"))
    payee = _dict(unit.get("payee")) or _dict(container.get("payee"))
    email = (
        _text(blob.get("email"))
        or _text(payer.get("email_address"))
        or _text(payer.get("email"))
        or _text(payee.get("email_address"))
    )
    name = _text(blob.get("name")) or _payer_name(payer) or FALLBACK_NAME
    return {"email": email, "name": name, "plan_hint": _text(blob.get("plan"))}


def _normalize_capture(raw: dict) -> PaymentEvent:
    order_id = _text(raw.get("id")) or _text(raw.get("orderId")) or _text(raw.get("order_id"))
    return PaymentEvent(order_id=order_id, shape=SHAPE_CAPTURE, **_from_order_like(raw))


def _normalize_webhook(raw: dict) -> PaymentEvent:
    event_type = _text(raw.get("event_type"))
    event_id = _text(raw.get("id"))
    if event_type not in INTERPRETED_EVENT_TYPES:
        return PaymentEvent(shape=SHAPE_WEBHOOK, event_type=event_type, event_id=event_id)
    resource = _dict(raw.get("resource"))
    if event_type == CAPTURE_COMPLETED:
        # resource is the capture; the order id lives in the related ids
        related = _dict(_dict(resource.get("supplementary_data")).get("related_ids"))
        order_id = _text(related.get("order_id")) or _text(resource.get("id"))
        details = _from_order_like(resource, custom_source=resource)
    else:
        order_id = _text(resource.get("id"))
        details = _from_order_like(resource)
    return PaymentEvent(
        order_id=order_id, shape=SHAPE_WEBHOOK, event_type=event_type, event_id=event_id, **details
    )


def _normalize_direct(raw: dict) -> PaymentEvent:
    return PaymentEvent(
        order_id=_text(raw.get("orderId")) or _text(raw.get("order_id")),
        email=_text(raw.get("email")),
        name=_text(raw.get("name")) or FALLBACK_NAME,
        plan_hint=_text(raw.get("plan")) or _text(raw.get("planHint")),
        shape=SHAPE_DIRECT,
    )


def detect_shape(raw: Any) -> str:
    if not isinstance(raw, dict):
        return SHAPE_UNKNOWN
    if "event_type" in raw and isinstance(raw.get("resource"), dict):
        return SHAPE_WEBHOOK
    if isinstance(raw.get("purchase_units"), list) or isinstance(raw.get("payer"), dict):
        return SHAPE_CAPTURE
    if "orderId" in raw or "order_id" in raw:
        return SHAPE_DIRECT
    return SHAPE_UNKNOWN


_NORMALIZERS = {
    SHAPE_WEBHOOK: _normalize_webhook,
    SHAPE_CAPTURE: _normalize_capture,
    SHAPE_DIRECT: _normalize_direct,
}


def normalize(raw: Any) -> PaymentEvent:
    shape = detect_shape(raw)
    fn = _NORMALIZERS.get(shape)
    if fn is None:
        return PaymentEvent()
    try:
        return fn(raw)
    except Exception:  # noqa: BLE001 - normalization must never raise
        logger.warning("payment payload of shape %s could not be normalized", shape, exc_info=True)
        return PaymentEvent(shape=shape)


def merge_order_details(event: PaymentEvent, order: dict | None) -> PaymentEvent:
    """Fold the verified order document into ``event``.

    The plan embedded in the order at creation time wins over any hint the
    notification carried; email and name only fill gaps.
    """
    if not isinstance(order, dict):
        return event
    details = _from_order_like(order)
    name = event.name
    if name == FALLBACK_NAME and details["name"] != FALLBACK_NAME:
        name = details["name"]
    return replace(
        event,
        plan_hint=details["plan_hint"] or event.plan_hint,
        email=event.email or details["email"],
        name=name,
    )
