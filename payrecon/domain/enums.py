from __future__ import annotations

from enum import Enum


class Gateway(str, Enum):
    """Supported payment gateways (strategy selector)."""

    FLUTTERWAVE = "FLUTTERWAVE"
    PAYSTACK = "PAYSTACK"
    OPAY = "OPAY"

    @classmethod
    def from_name(cls, name: str) -> "Gateway":
        return cls(name.strip().upper())


class SignatureMode(str, Enum):
    """Whether missing signatures or secrets are tolerated."""

    ENFORCE = "enforce"
    BYPASS = "bypass"


class ResponsePolicy(str, Enum):
    """How a gateway's failures map onto HTTP status codes.

    STRICT gateways get 4xx/5xx so they retry; ALWAYS_ACK gateways are
    acknowledged with 200 for every handled outcome.
    """

    STRICT = "strict"
    ALWAYS_ACK = "always_ack"


class MoneyUnit(str, Enum):
    """Unit convention of amounts carried in callback metadata."""

    MAJOR = "major"
    MINOR = "minor"
    # Legacy magnitude heuristic: values over 100,000 are treated as minor units
    AUTO = "auto"


class InventoryCause(str, Enum):
    REFUND = "REFUND"
    CANCELLED = "CANCELLED"


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"


class MovementReason(str, Enum):
    ORDER_FULFILLMENT = "ORDER_FULFILLMENT"
    ORDER_REFUND = "ORDER_REFUND"
    ORDER_CANCELLATION = "ORDER_CANCELLATION"
