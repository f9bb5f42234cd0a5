from __future__ import annotations

import copy
import itertools
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from payrecon.domain.enums import MovementReason
from payrecon.domain.models import (
    Customer,
    InventoryMovement,
    Order,
    OrderItem,
    OrderTracking,
    Payment,
    Product,
    ProductBatch,
)
from payrecon.domain.statuses import OrderPaymentStatus

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _sort_key(value: datetime | None) -> datetime:
    if value is None:
        return _FAR_FUTURE
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class InMemoryStore:
    """In-memory order/payment/inventory repository.

    Used when no database is configured and in tests. `transaction()`
    snapshots all state and restores it if the block raises.
    """

    _STATE = (
        "orders",
        "order_items",
        "payments",
        "tracking",
        "customers",
        "products",
        "batches",
        "movements",
    )

    def __init__(self) -> None:
        self.orders: Dict[str, Order] = {}
        self.order_items: list[OrderItem] = []
        self.payments: list[Payment] = []
        self.tracking: list[OrderTracking] = []
        self.customers: list[Customer] = []
        self.products: Dict[str, Product] = {}
        self.batches: list[ProductBatch] = []
        self.movements: list[InventoryMovement] = []
        self.webhooks: Dict[tuple[str, str], Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStore"]:
        # Serialized so a restore never overwrites another thread's commit
        with self._lock:
            snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}
            try:
                yield self
            except Exception:
                for name, value in snapshot.items():
                    setattr(self, name, value)
                raise

    # Seeding helpers used by callers outside the reconciliation path
    def add_order(self, order: Order, items: list[OrderItem] | None = None) -> Order:
        self.orders[order.id] = order
        for item in items or []:
            item.id = item.id or self._next_id("item")
            self.order_items.append(item)
        return order

    def add_customer(self, customer: Customer) -> Customer:
        self.customers.append(customer)
        return customer

    def add_product(self, product: Product) -> Product:
        self.products[product.id] = product
        return product

    def add_batch(self, batch: ProductBatch) -> ProductBatch:
        batch.created_at = batch.created_at or _now()
        self.batches.append(batch)
        return batch

    # Orders
    def find_order_by_reference(self, reference: str) -> Optional[Order]:
        for order in self.orders.values():
            if order.payment_reference == reference or order.order_number == reference:
                return order
        return None

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    def update_order_payment(
        self, order_id: str, status: OrderPaymentStatus, method: str, reference: str
    ) -> None:
        order = self.orders[order_id]
        order.payment_status = status
        order.payment_method = method
        order.payment_reference = reference
        order.updated_at = _now()

    def count_order_items(self, order_id: str) -> int:
        return sum(1 for item in self.order_items if item.order_id == order_id)

    def list_order_items(self, order_id: str) -> list[OrderItem]:
        return [item for item in self.order_items if item.order_id == order_id]

    def insert_order_items(self, items: list[OrderItem]) -> int:
        for item in items:
            item.id = item.id or self._next_id("item")
            self.order_items.append(item)
        return len(items)

    def add_tracking(self, entry: OrderTracking) -> OrderTracking:
        entry.id = entry.id or self._next_id("trk")
        entry.created_at = entry.created_at or _now()
        self.tracking.append(entry)
        return entry

    def list_tracking(self, order_id: str) -> list[OrderTracking]:
        return [entry for entry in self.tracking if entry.order_id == order_id]

    # Customers
    def find_customer_by_email(self, email: str | None) -> Optional[Customer]:
        if not email:
            return None
        for customer in self.customers:
            if customer.email.lower() == email.lower():
                return customer
        return None

    # Payments
    def find_payment_by_transaction(self, transaction_id: str) -> Optional[Payment]:
        return next((p for p in self.payments if p.transaction_id == transaction_id), None)

    def upsert_payment(self, payment: Payment) -> Payment:
        """Update the first payment with the same transaction id or insert a new one.

        Updates touch status, gateway reference and response only.
        """
        now = _now()
        existing = self.find_payment_by_transaction(payment.transaction_id)
        if existing is not None:
            existing.status = payment.status
            existing.gateway_reference = payment.gateway_reference
            existing.gateway_response = payment.gateway_response
            if payment.status == OrderPaymentStatus.COMPLETED and existing.completed_at is None:
                existing.completed_at = now
            existing.updated_at = now
            return existing
        payment.id = payment.id or self._next_id("pay")
        payment.created_at = now
        payment.updated_at = now
        if payment.status == OrderPaymentStatus.COMPLETED:
            payment.completed_at = now
        self.payments.append(payment)
        return payment

    # Inventory
    def get_product(self, product_id: str) -> Optional[Product]:
        return self.products.get(product_id)

    def set_product_stock(self, product_id: str, quantity: int) -> None:
        self.products[product_id].stock_quantity = quantity

    def list_available_batches(self, product_id: str) -> list[ProductBatch]:
        batches = [b for b in self.batches if b.product_id == product_id and b.qty > 0]
        return sorted(batches, key=lambda b: (_sort_key(b.expiry_date), _sort_key(b.created_at)))

    def adjust_batch_qty(self, batch_id: str, delta: int) -> None:
        for batch in self.batches:
            if batch.id == batch_id:
                batch.qty += delta
                return

    def add_movement(self, movement: InventoryMovement) -> InventoryMovement:
        movement.id = movement.id or self._next_id("mov")
        movement.created_at = movement.created_at or _now()
        self.movements.append(movement)
        return movement

    def list_movements(self, reference: str, reason: MovementReason) -> list[InventoryMovement]:
        found = [m for m in self.movements if m.reference == reference and m.reason == reason]
        return sorted(found, key=lambda m: _sort_key(m.created_at))

    def has_reversal(self, movement_id: str) -> bool:
        marker = f"REVERSAL_OF:{movement_id}"
        return any(m.notes == marker for m in self.movements)

    # Webhook inbox
    def record_webhook(
        self,
        *,
        gateway: str,
        event_id: str,
        event_type: str | None,
        reference: str | None,
        signature_valid: bool,
        payload: Any,
    ) -> bool:
        """Store a received callback once per (gateway, event id); returns False on duplicates."""
        key = (gateway, event_id)
        with self._lock:
            if key in self.webhooks:
                return False
            self.webhooks[key] = {
                "gateway": gateway,
                "event_id": event_id,
                "event_type": event_type,
                "reference": reference,
                "signature_valid": signature_valid,
                "payload": payload,
                "received_at": _now(),
            }
        return True
