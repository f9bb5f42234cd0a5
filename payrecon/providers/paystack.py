from __future__ import annotations

import logging
from typing import Any, Mapping

from payrecon.domain.dtos import GatewayHealth
from payrecon.domain.enums import Gateway, MoneyUnit, ResponsePolicy
from payrecon.domain.models import NormalizedEvent, PaymentData, VerificationResult
from payrecon.domain.statuses import PaymentEventStatus
from payrecon.utils.signatures import verify_paystack

from .base import GatewayAdapter, MalformedPayload, extract_items, parse_timestamp, to_major

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = "charge.success"
REFUND_PROCESSED = "refund.processed"
HANDLED_EVENTS = {CHARGE_SUCCESS, REFUND_PROCESSED}


def map_status(raw: Any) -> PaymentEventStatus:
    mapping = {
        "success": PaymentEventStatus.SUCCESS,
        "failed": PaymentEventStatus.FAILED,
        "pending": PaymentEventStatus.PENDING,
    }
    return mapping.get(str(raw or ""), PaymentEventStatus.ABANDONED)


class PaystackAdapter(GatewayAdapter):
    """Paystack callbacks and transaction API. Amounts arrive in kobo."""

    gateway = Gateway.PAYSTACK
    response_policy = ResponsePolicy.STRICT

    @property
    def configured(self) -> bool:
        return bool(self.settings.paystack_secret_key)

    @property
    def cross_verification_enabled(self) -> bool:
        return self.settings.paystack_cross_verify

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.paystack_secret_key}",
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
        # Raw bytes: re-serializing would not reproduce the signed body
        return verify_paystack(
            raw_body,
            headers.get("x-paystack-signature"),
            self.settings.paystack_webhook_secret,
            self.settings.effective_signature_mode,
        )

    def normalize(self, body: Mapping[str, Any]) -> NormalizedEvent:
        data = body.get("data")
        if not isinstance(data, Mapping):
            raise MalformedPayload("Paystack callback without data")
        customer = data.get("customer") if isinstance(data.get("customer"), Mapping) else {}
        if self.event_type(body) == REFUND_PROCESSED:
            reference = data.get("transaction_reference")
            status = PaymentEventStatus.REFUNDED
            items = None
        else:
            reference = data.get("reference")
            status = map_status(data.get("status"))
            metadata = data.get("metadata") if isinstance(data.get("metadata"), Mapping) else {}
            items = extract_items(metadata.get("items"), self.settings.paystack_item_price_unit)
        if not reference:
            raise MalformedPayload("Paystack callback without reference")
        payment_data = PaymentData(
            gateway=self.gateway,
            amount=to_major(data.get("amount"), MoneyUnit.MINOR),
            currency=str(data.get("currency") or self.settings.default_currency),
            gateway_reference=str(data["id"]) if data.get("id") is not None else None,
            payment_method=data.get("channel"),
            paid_at=parse_timestamp(data.get("paid_at") or data.get("paidAt")),
            customer_email=customer.get("email"),
            items=items,
        )
        return NormalizedEvent(
            reference=str(reference),
            status=status,
            payment_data=payment_data,
            raw_status=data.get("status"),
        )

    async def cross_verify(self, event: NormalizedEvent) -> VerificationResult | None:
        # The transaction API reports refunded charges as "reversed"
        if event.status == PaymentEventStatus.REFUNDED:
            return None
        return await super().cross_verify(event)

    async def verify_transaction(self, reference: str) -> VerificationResult:
        if not self.configured:
            return self._failed(reference, "Paystack not configured")
        url = f"{self.settings.paystack_base_url.rstrip('/')}/transaction/verify/{reference}"
        try:
            resp = await self._request("GET", url, headers=self._auth_headers)
            result = resp.json()
        except Exception as exc:  # noqa: BLE001
            return self._failed(reference, f"Network error: {exc}")
        if resp.status_code >= 400 or result.get("status") is not True:
            return self._failed(reference, str(result.get("message") or "Verification failed"))
        data = result.get("data") or {}
        return VerificationResult(
            gateway=self.gateway,
            reference=reference,
            verified=True,
            status=map_status(data.get("status")),
            amount=to_major(data.get("amount"), MoneyUnit.MINOR) if data.get("amount") is not None else None,
            currency=data.get("currency"),
            gateway_reference=str(data["id"]) if data.get("id") is not None else None,
            raw_status=data.get("status"),
        )

    async def probe(self) -> GatewayHealth:
        url = f"{self.settings.paystack_base_url.rstrip('/')}/bank"
        return await self._probe_get(url, self._auth_headers, params={"perPage": 1})
