from __future__ import annotations

from typing import Dict

from payrecon.config import Settings
from payrecon.domain.enums import Gateway

from .base import GatewayAdapter
from .flutterwave import FlutterwaveAdapter
from .opay import OpayAdapter
from .paystack import PaystackAdapter

# Order matters: manual verification tries gateways in this sequence
_ADAPTERS = {
    Gateway.FLUTTERWAVE: FlutterwaveAdapter,
    Gateway.PAYSTACK: PaystackAdapter,
    Gateway.OPAY: OpayAdapter,
}


def get_adapter(settings: Settings, gateway: Gateway | str) -> GatewayAdapter:
    """Return the adapter for a gateway name or enum value."""
    key = gateway if isinstance(gateway, Gateway) else Gateway.from_name(gateway)
    try:
        adapter_cls = _ADAPTERS[key]
    except KeyError as exc:
        raise ValueError(f"Unknown gateway {gateway}") from exc
    return adapter_cls(settings)


def get_adapters(settings: Settings) -> Dict[Gateway, GatewayAdapter]:
    return {gateway: adapter_cls(settings) for gateway, adapter_cls in _ADAPTERS.items()}
