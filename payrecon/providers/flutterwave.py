from __future__ import annotations

import logging
from typing import Any, Mapping

from payrecon.domain.dtos import GatewayHealth
from payrecon.domain.enums import Gateway, MoneyUnit, ResponsePolicy
from payrecon.domain.models import NormalizedEvent, PaymentData, VerificationResult
from payrecon.domain.statuses import PaymentEventStatus
from payrecon.utils.signatures import verify_flutterwave

from .base import GatewayAdapter, MalformedPayload, extract_items, parse_timestamp, to_major

logger = logging.getLogger(__name__)

HANDLED_EVENTS = {"charge.completed"}


def map_status(raw: Any) -> PaymentEventStatus:
    mapping = {
        "successful": PaymentEventStatus.SUCCESS,
        "failed": PaymentEventStatus.FAILED,
        "pending": PaymentEventStatus.PENDING,
    }
    return mapping.get(str(raw or ""), PaymentEventStatus.ABANDONED)


class FlutterwaveAdapter(GatewayAdapter):
    """Flutterwave callbacks (`charge.completed`) and v3 transaction API."""

    gateway = Gateway.FLUTTERWAVE
    response_policy = ResponsePolicy.STRICT

    @property
    def configured(self) -> bool:
        return bool(self.settings.flutterwave_secret_key)

    @property
    def cross_verification_enabled(self) -> bool:
        return self.settings.flutterwave_cross_verify

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.flutterwave_secret_key}",
            "Content-Type": "application/json",
        }

    def event_type(self, body: Mapping[str, Any]) -> str | None:
        event = body.get("event")
        return str(event) if event else None

    def handles_event(self, body: Mapping[str, Any]) -> bool:
        return self.event_type(body) in HANDLED_EVENTS

    def verify_signature(
        self, raw_body: bytes, body: Mapping[str, Any], headers: Mapping[str, str]
    ) -> bool:
        return verify_flutterwave(
            body,
            headers.get("verif-hash"),
            self.settings.flutterwave_webhook_secret,
            self.settings.effective_signature_mode,
        )

    def normalize(self, body: Mapping[str, Any]) -> NormalizedEvent:
        data = body.get("data")
        if not isinstance(data, Mapping) or not data.get("tx_ref"):
            raise MalformedPayload("Flutterwave callback without data.tx_ref")
        customer = data.get("customer") if isinstance(data.get("customer"), Mapping) else {}
        meta = data.get("meta") if isinstance(data.get("meta"), Mapping) else None
        if not meta or not meta.get("items"):
            customer_meta = customer.get("meta")
            meta = customer_meta if isinstance(customer_meta, Mapping) else meta
        payment_data = PaymentData(
            gateway=self.gateway,
            # Flutterwave reports amounts in major units
            amount=to_major(data.get("amount"), MoneyUnit.MAJOR),
            currency=str(data.get("currency") or self.settings.default_currency),
            gateway_reference=str(data["flw_ref"]) if data.get("flw_ref") else None,
            payment_method=data.get("payment_type"),
            paid_at=parse_timestamp(data.get("created_at")),
            customer_email=customer.get("email"),
            items=extract_items(meta.get("items") if meta else None, self.settings.flutterwave_item_price_unit),
        )
        return NormalizedEvent(
            reference=str(data["tx_ref"]),
            status=map_status(data.get("status")),
            payment_data=payment_data,
            raw_status=data.get("status"),
        )

    async def verify_transaction(self, reference: str) -> VerificationResult:
        if not self.configured:
            return self._failed(reference, "Flutterwave not configured")
        url = f"{self.settings.flutterwave_base_url.rstrip('/')}/transactions/verify_by_reference"
        try:
            resp = await self._request("GET", url, headers=self._auth_headers, params={"tx_ref": reference})
            result = resp.json()
        except Exception as exc:  # noqa: BLE001
            return self._failed(reference, f"Network error: {exc}")
        if resp.status_code >= 400 or result.get("status") != "success":
            return self._failed(reference, str(result.get("message") or "Verification failed"))
        data = result.get("data") or {}
        return VerificationResult(
            gateway=self.gateway,
            reference=reference,
            verified=True,
            status=map_status(data.get("status")),
            amount=to_major(data.get("amount"), MoneyUnit.MAJOR) if data.get("amount") is not None else None,
            currency=data.get("currency"),
            gateway_reference=data.get("flw_ref"),
            raw_status=data.get("status"),
        )

    async def probe(self) -> GatewayHealth:
        url = f"{self.settings.flutterwave_base_url.rstrip('/')}/banks/NG"
        return await self._probe_get(url, self._auth_headers)
