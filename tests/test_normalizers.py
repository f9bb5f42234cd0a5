from __future__ import annotations

import json
from decimal import Decimal

import pytest

from conftest import make_settings
from payrecon.domain.enums import Gateway, MoneyUnit
from payrecon.domain.statuses import PaymentEventStatus
from payrecon.providers import flutterwave, opay, paystack
from payrecon.providers.base import MalformedPayload, extract_items, to_major
from payrecon.providers.flutterwave import FlutterwaveAdapter
from payrecon.providers.opay import OpayAdapter
from payrecon.providers.paystack import PaystackAdapter


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("successful", PaymentEventStatus.SUCCESS),
        ("failed", PaymentEventStatus.FAILED),
        ("pending", PaymentEventStatus.PENDING),
        ("cancelled", PaymentEventStatus.ABANDONED),
        (None, PaymentEventStatus.ABANDONED),
    ],
)
def test_flutterwave_status_map(raw, expected) -> None:
    assert flutterwave.map_status(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("success", PaymentEventStatus.SUCCESS),
        ("failed", PaymentEventStatus.FAILED),
        ("pending", PaymentEventStatus.PENDING),
        ("abandoned", PaymentEventStatus.ABANDONED),
        ("reversed", PaymentEventStatus.ABANDONED),
    ],
)
def test_paystack_status_map(raw, expected) -> None:
    assert paystack.map_status(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("SUCCESS", PaymentEventStatus.SUCCESS),
        ("successful", PaymentEventStatus.SUCCESS),
        ("FAIL", PaymentEventStatus.FAILED),
        ("Failed", PaymentEventStatus.FAILED),
        ("pending", PaymentEventStatus.PENDING),
        ("INITIAL", PaymentEventStatus.PENDING),
        ("CLOSE", PaymentEventStatus.ABANDONED),
    ],
)
def test_opay_status_map_is_case_insensitive(raw, expected) -> None:
    assert opay.map_status(raw) == expected


def test_flutterwave_normalize_keeps_major_units_and_reads_customer_meta() -> None:
    adapter = FlutterwaveAdapter(make_settings())
    body = {
        "event": "charge.completed",
        "data": {
            "id": 285959875,
            "tx_ref": "O-001",
            "flw_ref": "FLW-MOCK-123",
            "amount": 4500.5,
            "currency": "NGN",
            "status": "successful",
            "payment_type": "card",
            "created_at": "2024-05-01T10:00:00.000Z",
            "customer": {
                "email": "ada@example.com",
                "meta": {"items": json.dumps([{"productId": "p1", "quantity": 2, "unitPrice": 2250.25}])},
            },
        },
    }

    event = adapter.normalize(body)

    assert event.reference == "O-001"
    assert event.status == PaymentEventStatus.SUCCESS
    data = event.payment_data
    assert data.gateway == Gateway.FLUTTERWAVE
    assert data.amount == Decimal("4500.50")
    assert data.gateway_reference == "FLW-MOCK-123"
    assert data.payment_method == "card"
    assert data.customer_email == "ada@example.com"
    assert data.paid_at is not None and data.paid_at.year == 2024
    assert data.items is not None and data.items[0].unit_price == Decimal("2250.25")


def test_paystack_amount_is_converted_from_kobo() -> None:
    adapter = PaystackAdapter(make_settings())
    body = {
        "event": "charge.success",
        "data": {
            "id": 302961,
            "reference": "O-001",
            "amount": 10000,
            "currency": "NGN",
            "status": "success",
            "channel": "card",
            "paid_at": "2024-05-01T10:00:00.000Z",
            "customer": {"email": "ada@example.com"},
            "metadata": {"items": [{"productId": "p1", "quantity": 1, "unitPrice": 100}]},
        },
    }

    event = adapter.normalize(body)

    assert event.payment_data.amount == Decimal("100.00")
    assert event.payment_data.gateway_reference == "302961"
    assert event.payment_data.payment_method == "card"
    assert event.payment_data.items is not None and len(event.payment_data.items) == 1


def test_paystack_refund_event_normalizes_to_refunded() -> None:
    adapter = PaystackAdapter(make_settings())
    body = {
        "event": "refund.processed",
        "data": {"transaction_reference": "O-001", "amount": 5000, "currency": "NGN", "status": "processed"},
    }

    assert adapter.handles_event(body)
    event = adapter.normalize(body)

    assert event.reference == "O-001"
    assert event.status == PaymentEventStatus.REFUNDED
    assert event.payment_data.amount == Decimal("50.00")


def test_opay_amount_object_is_converted_from_minor_units() -> None:
    adapter = OpayAdapter(make_settings())
    body = {
        "type": "transaction-status",
        "sha512": "ignored",
        "payload": {
            "reference": "BP_1",
            "transactionId": "2110041408",
            "status": "SUCCESS",
            "amount": {"total": 49160, "currency": "NGN"},
            "callbackParam": json.dumps({"items": [{"productId": "p9", "unitPrice": 49160}]}),
        },
    }

    event = adapter.normalize(body)

    assert event.payment_data.amount == Decimal("491.60")
    assert event.payment_data.currency == "NGN"
    assert event.payment_data.gateway_reference == "2110041408"
    assert event.payment_data.items is not None
    assert event.payment_data.items[0].quantity == 1


def test_opay_numeric_string_amount_and_order_no_fallback() -> None:
    adapter = OpayAdapter(make_settings())
    body = {
        "type": "transaction-status",
        "payload": {"reference": "BP_2", "orderNo": "ORD-77", "status": "FAIL", "amount": "250000", "currency": "NGN"},
    }

    event = adapter.normalize(body)

    assert event.payment_data.amount == Decimal("2500.00")
    assert event.payment_data.gateway_reference == "ORD-77"
    assert event.status == PaymentEventStatus.FAILED


def test_item_extraction_failures_are_swallowed() -> None:
    assert extract_items("{not json", MoneyUnit.MAJOR) is None
    assert extract_items({"productId": "p1"}, MoneyUnit.MAJOR) is None
    assert extract_items([{"quantity": 3}], MoneyUnit.MAJOR) is None
    assert extract_items([{"productId": "p1", "unitPrice": "abc"}], MoneyUnit.MAJOR) is None

    adapter = OpayAdapter(make_settings())
    body = {
        "type": "transaction-status",
        "payload": {"reference": "BP_3", "status": "SUCCESS", "amount": "100", "callbackParam": "{broken"},
    }
    assert adapter.normalize(body).payment_data.items is None


def test_items_default_name_sku_and_quantity() -> None:
    items = extract_items([{"productId": 42, "unitPrice": 10}], MoneyUnit.MAJOR)

    assert items is not None
    item = items[0]
    assert (item.product_id, item.quantity, item.name, item.sku) == ("42", 1, "Unknown Product", "N/A")


@pytest.mark.parametrize(
    "unit, raw, expected",
    [
        (MoneyUnit.MAJOR, 250000, Decimal("250000.00")),
        (MoneyUnit.MINOR, 2500, Decimal("25.00")),
        (MoneyUnit.AUTO, 100000, Decimal("100000.00")),
        (MoneyUnit.AUTO, 250000, Decimal("2500.00")),
    ],
)
def test_item_price_unit_conventions(unit, raw, expected) -> None:
    assert to_major(raw, unit) == expected


def test_item_price_unit_is_configurable_per_gateway() -> None:
    adapter = PaystackAdapter(make_settings(paystack_item_price_unit=MoneyUnit.MINOR))
    body = {
        "event": "charge.success",
        "data": {
            "reference": "O-9",
            "amount": 10000,
            "status": "success",
            "metadata": {"items": [{"productId": "p1", "unitPrice": 10000}]},
        },
    }
    items = adapter.normalize(body).payment_data.items
    assert items is not None and items[0].unit_price == Decimal("100.00")


def test_missing_reference_is_malformed() -> None:
    with pytest.raises(MalformedPayload):
        FlutterwaveAdapter(make_settings()).normalize({"event": "charge.completed", "data": {"amount": 1}})


def test_handled_events() -> None:
    settings = make_settings()
    assert FlutterwaveAdapter(settings).handles_event({"event": "charge.completed"})
    assert not FlutterwaveAdapter(settings).handles_event({"event": "transfer.completed"})
    assert PaystackAdapter(settings).handles_event({"event": "charge.success"})
    assert not PaystackAdapter(settings).handles_event({"event": "subscription.create"})
    assert OpayAdapter(settings).handles_event({"type": "transaction-status", "payload": {}})
    assert not OpayAdapter(settings).handles_event({"type": "refund-status", "payload": {}})
