from __future__ import annotations

from enum import Enum


class PaymentEventStatus(str, Enum):
    """Gateway-independent status of a payment callback."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"
    ABANDONED = "ABANDONED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"

    def to_db_status(self) -> "OrderPaymentStatus":
        mapping = {
            PaymentEventStatus.SUCCESS: OrderPaymentStatus.COMPLETED,
            PaymentEventStatus.FAILED: OrderPaymentStatus.FAILED,
            PaymentEventStatus.PENDING: OrderPaymentStatus.PENDING,
            PaymentEventStatus.ABANDONED: OrderPaymentStatus.CANCELLED,
            PaymentEventStatus.REFUNDED: OrderPaymentStatus.REFUNDED,
            PaymentEventStatus.CANCELLED: OrderPaymentStatus.CANCELLED,
        }
        return mapping[self]


class OrderPaymentStatus(str, Enum):
    """Persisted payment status of orders and payment rows."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"

    @property
    def reverses_stock(self) -> bool:
        return self in {OrderPaymentStatus.REFUNDED, OrderPaymentStatus.CANCELLED}
