from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from payrecon.domain.dtos import GatewayHealth
from payrecon.domain.enums import Gateway, MoneyUnit, ResponsePolicy
from payrecon.domain.models import NormalizedEvent, PaymentData, VerificationResult
from payrecon.domain.statuses import PaymentEventStatus
from payrecon.utils.signatures import sign_opay_request, verify_opay

from .base import GatewayAdapter, MalformedPayload, extract_items, parse_timestamp, to_major

logger = logging.getLogger(__name__)

TRANSACTION_STATUS = "transaction-status"
STATUS_PATH = "/api/v1/international/cashier/status"
SUCCESS_CODE = "00000"
PROBE_REFERENCE = "HEALTH-PROBE"


def map_status(raw: Any) -> PaymentEventStatus:
    value = str(raw or "").upper()
    if value in {"SUCCESS", "SUCCESSFUL"}:
        return PaymentEventStatus.SUCCESS
    if value in {"FAIL", "FAILED"}:
        return PaymentEventStatus.FAILED
    if value in {"PENDING", "INITIAL"}:
        return PaymentEventStatus.PENDING
    return PaymentEventStatus.ABANDONED


def parse_amount(raw: Any, default_currency: str) -> tuple[Any, str]:
    """Return (minor-unit amount, currency) from an object or numeric string."""
    if isinstance(raw, Mapping):
        return raw.get("total"), str(raw.get("currency") or default_currency)
    return raw, default_currency


def _callback_items(param: Any, unit: MoneyUnit) -> Any:
    try:
        parsed = json.loads(param) if isinstance(param, str) else param
    except ValueError:
        return None
    if isinstance(parsed, Mapping):
        return extract_items(parsed.get("items"), unit)
    return None


class OpayAdapter(GatewayAdapter):
    """OPay cashier callbacks.

    OPay retries failed deliveries for up to 72 hours, so every handled
    outcome is acknowledged with HTTP 200.
    """

    gateway = Gateway.OPAY
    response_policy = ResponsePolicy.ALWAYS_ACK

    @property
    def configured(self) -> bool:
        return bool(self.settings.opay_secret_key and self.settings.opay_merchant_id)

    @property
    def cross_verification_enabled(self) -> bool:
        return self.settings.opay_cross_verification

    def event_type(self, body: Mapping[str, Any]) -> str | None:
        event = body.get("type")
        return str(event) if event else None

    def handles_event(self, body: Mapping[str, Any]) -> bool:
        return self.event_type(body) == TRANSACTION_STATUS and isinstance(body.get("payload"), Mapping)

    def verify_signature(
        self, raw_body: bytes, body: Mapping[str, Any], headers: Mapping[str, str]
    ) -> bool:
        return verify_opay(body, self.settings.opay_secret_key, self.settings.effective_signature_mode)

    def normalize(self, body: Mapping[str, Any]) -> NormalizedEvent:
        payload = body.get("payload")
        if not isinstance(payload, Mapping) or not payload.get("reference"):
            raise MalformedPayload("OPay callback without payload.reference")
        minor, currency = parse_amount(payload.get("amount"), str(payload.get("currency") or self.settings.default_currency))
        gateway_reference = payload.get("transactionId") or payload.get("orderNo")
        payment_data = PaymentData(
            gateway=self.gateway,
            amount=to_major(minor, MoneyUnit.MINOR),
            currency=currency,
            gateway_reference=str(gateway_reference) if gateway_reference else None,
            payment_method=payload.get("instrumentType") or payload.get("channel") or "opay",
            paid_at=parse_timestamp(payload.get("timestamp")),
            customer_email=payload.get("userEmail") or payload.get("email"),
            items=_callback_items(payload.get("callbackParam"), self.settings.opay_item_price_unit),
        )
        return NormalizedEvent(
            reference=str(payload["reference"]),
            status=map_status(payload.get("status")),
            payment_data=payment_data,
            raw_status=payload.get("status"),
            extra={"refunded": payload.get("refunded") is True},
        )

    def _status_request(self, reference: str) -> tuple[str, dict[str, str], bytes]:
        body = json.dumps(
            {"reference": reference, "country": self.settings.opay_country},
            separators=(",", ":"),
        ).encode("utf-8")
        headers = {
            "MerchantId": self.settings.opay_merchant_id,
            "Authorization": f"Bearer {sign_opay_request(body, self.settings.opay_secret_key)}",
            "Content-Type": "application/json",
        }
        return f"{self.settings.opay_api_base}{STATUS_PATH}", headers, body

    async def verify_transaction(self, reference: str) -> VerificationResult:
        if not self.configured:
            return self._failed(reference, "OPay not configured")
        url, headers, body = self._status_request(reference)
        try:
            resp = await self._request("POST", url, headers=headers, content=body)
            result = resp.json()
        except Exception as exc:  # noqa: BLE001
            return self._failed(reference, f"Network error: {exc}")
        if resp.status_code >= 400 or str(result.get("code")) != SUCCESS_CODE:
            return self._failed(reference, str(result.get("message") or "Verification failed"))
        data = result.get("data") or {}
        minor, currency = parse_amount(data.get("amount"), self.settings.default_currency)
        gateway_reference = data.get("orderNo") or data.get("transactionId")
        return VerificationResult(
            gateway=self.gateway,
            reference=reference,
            verified=True,
            status=map_status(data.get("status")),
            amount=to_major(minor, MoneyUnit.MINOR) if minor is not None else None,
            currency=currency,
            gateway_reference=str(gateway_reference) if gateway_reference else None,
            raw_status=data.get("status"),
        )

    async def probe(self) -> GatewayHealth:
        if not self.configured:
            return GatewayHealth(configured=False, error="Credentials not configured")
        if self.settings.is_production:
            # No read-only endpoint; avoid touching live merchant data
            return GatewayHealth(configured=True, tested=False, working=True)
        url, headers, body = self._status_request(PROBE_REFERENCE)
        try:
            resp = await self._request("POST", url, headers=headers, content=body)
            result = resp.json()
        except Exception as exc:  # noqa: BLE001
            return GatewayHealth(configured=True, tested=True, working=False, error=str(exc))
        if resp.status_code >= 400:
            return GatewayHealth(
                configured=True, tested=True, working=False, error=f"HTTP {resp.status_code}"
            )
        # An unknown reference still proves the credentials were accepted
        logger.info("opay probe answered", extra={"gateway": self.gateway, "response_code": result.get("code")})
        return GatewayHealth(configured=True, tested=True, working=True)
