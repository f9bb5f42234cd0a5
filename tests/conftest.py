from __future__ import annotations

import pathlib
import sys
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from payrecon.config import Settings
from payrecon.domain.enums import SignatureMode
from payrecon.domain.models import Customer, Order, PaymentData, ValidationResult
from payrecon.domain.statuses import PaymentEventStatus
from payrecon.main import app
from payrecon.providers.factory import get_adapters
from payrecon.repositories.memory_store import InMemoryStore
from payrecon.services.inventory import InventoryService
from payrecon.services.reconciliation import ReconciliationEngine
from payrecon.services.validation import AmountValidationGuard
from payrecon.services.verification import VerificationService
from payrecon.services.webhook_dispatcher import WebhookDispatcher
from payrecon.wiring import get_dispatcher, get_verification_service

FLW_SECRET = "flw-webhook-secret"
PAYSTACK_SECRET = "sk_test_paystack"
OPAY_SECRET = "opay-private-key"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "app_env": "test",
        "flutterwave_secret_key": "FLWSECK_TEST-123",
        "flutterwave_webhook_secret": FLW_SECRET,
        "paystack_secret_key": PAYSTACK_SECRET,
        "paystack_webhook_secret": PAYSTACK_SECRET,
        "opay_secret_key": OPAY_SECRET,
        "opay_public_key": "OPAYPUB123",
        "opay_merchant_id": "256620000000001",
        "opay_cross_verify": False,
        "db_host": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class RecordingGuard(AmountValidationGuard):
    """Validation guard that remembers every call it receives."""

    def __init__(self, store: InMemoryStore):
        super().__init__(store)
        self.calls: list[tuple[str, PaymentEventStatus, PaymentData]] = []

    def validate(
        self, reference: str, status: PaymentEventStatus, payment_data: PaymentData
    ) -> ValidationResult:
        self.calls.append((reference, status, payment_data))
        return super().validate(reference, status, payment_data)


@dataclass
class Harness:
    settings: Settings
    store: InMemoryStore
    guard: RecordingGuard
    inventory: InventoryService
    engine: ReconciliationEngine
    dispatcher: WebhookDispatcher
    verification: VerificationService


def build_harness(settings: Settings) -> Harness:
    store = InMemoryStore()
    guard = RecordingGuard(store)
    inventory = InventoryService(store)
    engine = ReconciliationEngine(store, guard, inventory, default_currency=settings.default_currency)
    adapters = get_adapters(settings)
    return Harness(
        settings=settings,
        store=store,
        guard=guard,
        inventory=inventory,
        engine=engine,
        dispatcher=WebhookDispatcher(adapters, engine, store, settings),
        verification=VerificationService(adapters, settings),
    )


def seed_order(
    store: InMemoryStore,
    *,
    order_id: str = "ord_1",
    order_number: str = "O-001",
    total: str = "100.00",
    customer_id: str = "cus_1",
) -> Order:
    return store.add_order(
        Order(id=order_id, order_number=order_number, customer_id=customer_id, total=Decimal(total))
    )


def seed_customer(store: InMemoryStore, email: str = "ada@example.com") -> Customer:
    return store.add_customer(Customer(id="cus_1", user_id="usr_1", email=email))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def harness(settings: Settings) -> Harness:
    return build_harness(settings)


@pytest.fixture
def client(harness: Harness) -> Iterator[TestClient]:
    app.dependency_overrides[get_dispatcher] = lambda: harness.dispatcher
    app.dependency_overrides[get_verification_service] = lambda: harness.verification
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def enforce_settings() -> Settings:
    return make_settings(signature_mode=SignatureMode.ENFORCE)
