from __future__ import annotations

import json

import pytest

from phonegate.core.events import (
    CAPTURE_COMPLETED,
    FALLBACK_NAME,
    ORDER_APPROVED,
    SHAPE_CAPTURE,
    SHAPE_DIRECT,
    SHAPE_WEBHOOK,
    PaymentEvent,
    merge_order_details,
    normalize,
    parse_custom_blob,
)

BLOB = json.dumps({"name": "Ada Lovelace", "email": "ada@example.com", "plan": "pro"})


def _capture():
    return {
        "id": "5O190127TN364715T",
        "status": "COMPLETED",
        "purchase_units": [{"custom_id": BLOB, "payments": {"captures": [{"id": "3C679366HH908993F"}]}}],
        "payer": {"email_address": "payer@example.com", "name": {"given_name": "A", "surname": "L"}},
    }


def _webhook_approved():
    return {
        "id": "WH-1",
        "event_type": ORDER_APPROVED,
        "resource": {"id": "5O190127TN364715T", "status": "APPROVED", "purchase_units": [{"custom_id": BLOB}]},
    }


def _webhook_capture():
    return {
        "id": "WH-2",
        "event_type": CAPTURE_COMPLETED,
        "resource": {
            "id": "3C679366HH908993F",
            "status": "COMPLETED",
            "custom_id": BLOB,
            "supplementary_data": {"related_ids": {"order_id": "5O190127TN364715T"}},
        },
    }


def _direct():
    return {"orderId": "5O190127TN364715T", "email": "ada@example.com", "name": "Ada Lovelace", "plan": "pro"}


def test_all_shapes_describe_the_same_payment():
    expected = PaymentEvent(
        order_id="5O190127TN364715T", email="ada@example.com", name="Ada Lovelace", plan_hint="pro"
    )
    events = [normalize(p) for p in (_capture(), _webhook_approved(), _webhook_capture(), _direct())]
    assert all(e == expected for e in events)
    assert [e.shape for e in events] == [SHAPE_CAPTURE, SHAPE_WEBHOOK, SHAPE_WEBHOOK, SHAPE_DIRECT]


def test_webhook_keeps_event_type_and_id():
    ev = normalize(_webhook_capture())
    assert ev.event_type == CAPTURE_COMPLETED
    assert ev.event_id == "WH-2"


def test_uninterpreted_webhook_has_no_order_id():
    ev = normalize({"id": "WH-3", "event_type": "PAYMENT.CAPTURE.REFUNDED", "resource": {"id": "X"}})
    assert ev.order_id is None
    assert ev.event_type == "PAYMENT.CAPTURE.REFUNDED"
    assert not ev.is_actionable


def test_capture_falls_back_to_payer_details_without_blob():
    raw = _capture()
    raw["purchase_units"][0]["custom_id"] = None
    ev = normalize(raw)
    assert ev.email == "payer@example.com"
    assert ev.name == "A L"
    assert ev.plan_hint is None


def test_payee_email_is_last_resort():
    raw = {"id": "O-9", "purchase_units": [{"payee": {"email_address": "merchant@example.com"}}], "payer": {}}
    ev = normalize(raw)
    assert ev.email == "merchant@example.com"
    assert ev.name == FALLBACK_NAME


@pytest.mark.parametrize(
    "raw",
    [
        None,
        42,
        "not json",
        [],
        {},
        {"purchase_units": "nope"},
        {"event_type": ORDER_APPROVED, "resource": {"purchase_units": [None]}},
        {"payer": {"name": "flat string"}, "purchase_units": [{"custom_id": "{bad json"}]},
    ],
)
def test_garbage_never_raises(raw):
    ev = normalize(raw)
    assert isinstance(ev, PaymentEvent)


def test_malformed_blob_yields_empty_metadata():
    assert parse_custom_blob("{oops") == {}
    assert parse_custom_blob("[1, 2]") == {}
    assert parse_custom_blob("") == {}
    raw = _capture()
    raw["purchase_units"][0]["custom_id"] = "{oops"
    ev = normalize(raw)
    assert ev.order_id == "5O190127TN364715T"
    assert ev.plan_hint is None
    assert ev.email == "payer@example.com"


def test_numeric_order_id_is_text():
    assert normalize({"orderId": 12345}).order_id == "12345"


def test_merge_prefers_order_plan_and_fills_gaps():
    ev = PaymentEvent(order_id="O-1", plan_hint="standard")
    order = {"id": "O-1", "purchase_units": [{"custom_id": BLOB}]}
    merged = merge_order_details(ev, order)
    assert merged.plan_hint == "pro"
    assert merged.email == "ada@example.com"
    assert merged.name == "Ada Lovelace"


def test_merge_keeps_event_email():
    ev = PaymentEvent(order_id="O-1", email="first@example.com", name="First")
    merged = merge_order_details(ev, {"purchase_units": [{"custom_id": BLOB}]})
    assert merged.email == "first@example.com"
    assert merged.name == "First"
    assert merge_order_details(ev, None) is ev
