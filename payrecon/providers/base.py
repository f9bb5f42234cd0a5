from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping

import httpx

from payrecon.config import Settings
from payrecon.domain.dtos import GatewayHealth
from payrecon.domain.enums import Gateway, MoneyUnit, ResponsePolicy
from payrecon.domain.models import NormalizedEvent, NormalizedItem, VerificationResult

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
# Item prices above this are read as minor units under MoneyUnit.AUTO
AUTO_MINOR_THRESHOLD = Decimal("100000")


class MalformedPayload(ValueError):
    """Raised when a callback body lacks the fields a normalizer needs."""


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise MalformedPayload(f"Invalid monetary amount: {value!r}")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise MalformedPayload(f"Invalid monetary amount: {value!r}") from exc


def to_major(value: Any, unit: MoneyUnit) -> Decimal:
    """Convert an amount to major currency units, two decimal places."""
    amount = to_decimal(value)
    if unit == MoneyUnit.MINOR or (unit == MoneyUnit.AUTO and amount > AUTO_MINOR_THRESHOLD):
        amount = amount / 100
    return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def parse_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
        # Millisecond epochs are common in callback payloads
        if seconds > 1e11:
            seconds /= 1000
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.isdigit():
        return parse_timestamp(int(text))
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def extract_items(raw: Any, unit: MoneyUnit) -> list[NormalizedItem] | None:
    """Best-effort parse of line items embedded in callback metadata.

    Accepts a list or a JSON string holding one. Entries without a
    productId are dropped; any parsing error yields None.
    """
    if raw in (None, "", []):
        return None
    try:
        entries = json.loads(raw) if isinstance(raw, str) else raw
        if not isinstance(entries, list):
            return None
        items: list[NormalizedItem] = []
        for entry in entries:
            if not isinstance(entry, Mapping) or not entry.get("productId"):
                continue
            items.append(
                NormalizedItem(
                    product_id=str(entry["productId"]),
                    quantity=int(entry.get("quantity") or 1),
                    unit_price=to_major(entry.get("unitPrice") or 0, unit),
                    name=str(entry.get("name") or "Unknown Product"),
                    sku=str(entry.get("sku") or "N/A"),
                )
            )
        return items or None
    except Exception as exc:  # noqa: BLE001
        logger.info("metadata items ignored", extra={"error": str(exc)})
        return None


class GatewayAdapter(ABC):
    """Per-gateway strategy used by the webhook dispatcher and verification service."""

    gateway: Gateway
    response_policy: ResponsePolicy = ResponsePolicy.STRICT

    def __init__(self, settings: Settings):
        self.settings = settings
        self.timeout = settings.gateway_timeout_seconds

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether API credentials are present."""

    @abstractmethod
    def event_type(self, body: Mapping[str, Any]) -> str | None:
        """Return the callback's event type label."""

    @abstractmethod
    def handles_event(self, body: Mapping[str, Any]) -> bool:
        """Whether the callback is one this service reconciles."""

    @abstractmethod
    def verify_signature(
        self, raw_body: bytes, body: Mapping[str, Any], headers: Mapping[str, str]
    ) -> bool:
        """Check the callback signature under the configured signature mode."""

    @abstractmethod
    def normalize(self, body: Mapping[str, Any]) -> NormalizedEvent:
        """Map a handled callback to the internal representation."""

    @abstractmethod
    async def verify_transaction(self, reference: str) -> VerificationResult:
        """Query the gateway's status API for a merchant reference."""

    @abstractmethod
    async def probe(self) -> GatewayHealth:
        """Harmless connectivity check used by the health endpoint."""

    @property
    def cross_verification_enabled(self) -> bool:
        return False

    async def cross_verify(self, event: NormalizedEvent) -> VerificationResult | None:
        """Corroborate a callback against the status API when enabled."""
        if not self.cross_verification_enabled:
            return None
        return await self.verify_transaction(event.reference)

    def reference_of(self, body: Mapping[str, Any]) -> str | None:
        try:
            return self.normalize(body).reference
        except Exception:  # noqa: BLE001
            return None

    def _failed(self, reference: str, error: str) -> VerificationResult:
        return VerificationResult(gateway=self.gateway, reference=reference, verified=False, error=error)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        params: Dict[str, Any] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if method == "GET":
                    resp = await client.get(url, headers=headers, params=params)
                else:
                    resp = await client.post(url, headers=headers, content=content)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "gateway request failed",
                extra={
                    "gateway": self.gateway,
                    "endpoint": url,
                    "error": str(exc),
                    "latency_ms": int((time.monotonic() - started) * 1000),
                },
            )
            raise
        logger.info(
            "gateway request completed",
            extra={
                "gateway": self.gateway,
                "endpoint": url,
                "response_code": resp.status_code,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return resp

    async def _probe_get(self, url: str, headers: Dict[str, str], params: Dict[str, Any] | None = None) -> GatewayHealth:
        if not self.configured:
            return GatewayHealth(configured=False, error="Credentials not configured")
        try:
            resp = await self._request("GET", url, headers=headers, params=params)
        except Exception as exc:  # noqa: BLE001
            return GatewayHealth(configured=True, tested=True, working=False, error=str(exc))
        if resp.status_code >= 400:
            return GatewayHealth(
                configured=True, tested=True, working=False, error=f"HTTP {resp.status_code}"
            )
        return GatewayHealth(configured=True, tested=True, working=True)
