from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from .enums import Gateway, MovementReason, MovementType
from .statuses import OrderPaymentStatus, PaymentEventStatus


@dataclass
class Order:
    """Order as seen by the reconciliation core."""

    id: str
    order_number: str
    customer_id: str
    total: Decimal
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    payment_method: str | None = None
    payment_reference: str | None = None
    updated_at: datetime | None = None


@dataclass
class OrderItem:
    order_id: str
    product_id: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    product_name: str = "Unknown Product"
    product_sku: str = "N/A"
    id: str | None = None


@dataclass
class Payment:
    """One gateway transaction attempt; order_id is None for orphan payments."""

    transaction_id: str
    customer_id: str
    amount: Decimal
    currency: str
    method: str
    status: OrderPaymentStatus
    order_id: str | None = None
    gateway_reference: str | None = None
    gateway_response: dict[str, Any] | None = None
    completed_at: datetime | None = None
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class OrderTracking:
    order_id: str
    status: str
    notes: str | None = None
    id: str | None = None
    created_at: datetime | None = None


@dataclass
class Product:
    id: str
    stock_quantity: int
    has_expiry: bool = False


@dataclass
class ProductBatch:
    id: str
    product_id: str
    qty: int
    expiry_date: datetime | None = None
    created_at: datetime | None = None


@dataclass
class InventoryMovement:
    product_id: str
    type: MovementType
    quantity: int
    reason: MovementReason
    reference: str
    previous_stock: int
    new_stock: int
    batch_id: str | None = None
    notes: str | None = None
    id: str | None = None
    created_at: datetime | None = None


@dataclass
class NormalizedItem:
    """Line item carried in callback metadata, prices in major units."""

    product_id: str
    quantity: int
    unit_price: Decimal
    name: str = "Unknown Product"
    sku: str = "N/A"

    def to_dict(self) -> dict[str, Any]:
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "unitPrice": format(self.unit_price, "f"),
            "name": self.name,
            "sku": self.sku,
        }


@dataclass
class PaymentData:
    """Normalized payment details extracted from a gateway callback."""

    gateway: Gateway
    amount: Decimal
    currency: str
    gateway_reference: str | None = None
    payment_method: str | None = None
    paid_at: datetime | None = None
    customer_email: str | None = None
    items: list[NormalizedItem] | None = None
    gateway_fee: Decimal = Decimal("0")
    app_fee: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": self.gateway.value,
            "gatewayReference": self.gateway_reference,
            "amount": format(self.amount, "f"),
            "currency": self.currency,
            "paymentMethod": self.payment_method,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "customerEmail": self.customer_email,
            "items": [item.to_dict() for item in self.items] if self.items else None,
            "gatewayFee": format(self.gateway_fee, "f"),
            "appFee": format(self.app_fee, "f"),
        }


@dataclass
class NormalizedEvent:
    """A callback reduced to what the reconciliation engine needs."""

    reference: str
    status: PaymentEventStatus
    payment_data: PaymentData
    raw_status: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Customer:
    id: str
    user_id: str
    email: str


@dataclass
class ValidationResult:
    success: bool
    error: str | None = None


@dataclass
class ReconciliationResult:
    """Outcome of applying one callback to local state."""

    success: bool
    error: str | None = None
    status: OrderPaymentStatus | None = None
    order_id: str | None = None
    payment_id: str | None = None
    already_processed: bool = False
    orphan: bool = False


@dataclass
class SideEffectResult:
    """Outcome of a best-effort side effect; callers log it and move on."""

    ok: bool
    skipped: bool = False
    movements: int = 0
    error: str | None = None

    @classmethod
    def failed(cls, exc: Exception) -> "SideEffectResult":
        return cls(ok=False, error=str(exc))


@dataclass
class VerificationResult:
    """Transaction state as reported by a gateway status API."""

    gateway: Gateway
    reference: str
    verified: bool
    status: PaymentEventStatus | None = None
    amount: Decimal | None = None
    currency: str | None = None
    gateway_reference: str | None = None
    raw_status: str | None = None
    error: str | None = None
