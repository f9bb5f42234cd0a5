from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import Any, Dict, Mapping

from payrecon.config import Settings
from payrecon.domain.dtos import WebhookAck
from payrecon.domain.enums import Gateway, ResponsePolicy, SignatureMode
from payrecon.providers.base import GatewayAdapter, MalformedPayload
from payrecon.repositories.memory_store import InMemoryStore
from payrecon.repositories.pg_store import PgStore
from payrecon.services.reconciliation import ReconciliationEngine

GENERIC_ERROR = "Webhook processing failed"


class WebhookDispatcher:
    """Runs one callback through verify, normalize, cross-check and reconcile.

    The returned status code is what steers gateway retries: STRICT
    gateways see 4xx/5xx on failure, ALWAYS_ACK gateways see 200 for
    every handled outcome. Only an unexpected error yields 500 for all.
    """

    def __init__(
        self,
        adapters: Dict[Gateway, GatewayAdapter],
        engine: ReconciliationEngine,
        store: InMemoryStore | PgStore,
        cfg: Settings,
    ):
        self.adapters = adapters
        self.engine = engine
        self.store = store
        self.settings = cfg
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _reject(adapter: GatewayAdapter, error: str, strict_code: int) -> tuple[int, WebhookAck]:
        code = 200 if adapter.response_policy == ResponsePolicy.ALWAYS_ACK else strict_code
        return code, WebhookAck(success=False, error=error)

    async def dispatch(
        self, gateway: Gateway, raw_body: bytes, headers: Mapping[str, str]
    ) -> tuple[int, WebhookAck]:
        adapter = self.adapters[gateway]
        try:
            body = json.loads(raw_body)
            if not isinstance(body, dict):
                raise MalformedPayload("Callback body must be a JSON object")
            return await self._process(adapter, raw_body, body, headers)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "webhook processing failed",
                extra={"gateway": gateway, "error": str(exc)},
                exc_info=not isinstance(exc, ValueError),
            )
            return 500, WebhookAck(success=False, error=GENERIC_ERROR)

    async def _process(
        self,
        adapter: GatewayAdapter,
        raw_body: bytes,
        body: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> tuple[int, WebhookAck]:
        gateway = adapter.gateway
        event_type = adapter.event_type(body)
        signature_valid = adapter.verify_signature(raw_body, body, headers)
        await self._record(adapter, raw_body, body, event_type, signature_valid)

        if not signature_valid and self.settings.effective_signature_mode == SignatureMode.ENFORCE:
            self.logger.warning("invalid webhook signature", extra={"gateway": gateway, "event": event_type})
            return self._reject(adapter, "Invalid signature", 400)

        if not adapter.handles_event(body):
            self.logger.info("webhook event ignored", extra={"gateway": gateway, "event": event_type})
            return 200, WebhookAck(success=True, message="Event not processed")

        event = adapter.normalize(body)
        self.logger.info(
            "webhook received",
            extra={
                "gateway": gateway,
                "event": event_type,
                "reference": event.reference,
                "status": event.status,
            },
        )

        cross = await adapter.cross_verify(event)
        if cross is not None:
            if not cross.verified:
                self.logger.warning(
                    "cross verification unavailable",
                    extra={"gateway": gateway, "reference": event.reference, "error": cross.error},
                )
                return self._reject(adapter, "Verification unavailable", 502)
            if cross.status != event.status:
                self.logger.warning(
                    "cross verification status mismatch",
                    extra={
                        "gateway": gateway,
                        "reference": event.reference,
                        "status": event.status,
                        "error": f"gateway reports {cross.raw_status}",
                    },
                )
                return self._reject(adapter, "Status verification mismatch", 409)

        result = await self.engine.reconcile(event.reference, event.status, event.payment_data)
        if not result.success:
            self.logger.error(
                "webhook reconciliation failed",
                extra={"gateway": gateway, "reference": event.reference, "error": result.error},
            )
            return self._reject(adapter, result.error or "Processing failed", 500)

        self.logger.info(
            "webhook processed",
            extra={
                "gateway": gateway,
                "reference": event.reference,
                "status": result.status,
                "order_id": result.order_id,
                "already_processed": result.already_processed,
            },
        )
        return 200, WebhookAck(success=True, message="Webhook processed")

    async def _record(
        self,
        adapter: GatewayAdapter,
        raw_body: bytes,
        body: Dict[str, Any],
        event_type: str | None,
        signature_valid: bool,
    ) -> None:
        """Best-effort inbox write keyed by a digest of the delivered bytes."""
        try:
            await asyncio.to_thread(
                self.store.record_webhook,
                gateway=adapter.gateway.value,
                event_id=hashlib.sha256(raw_body).hexdigest(),
                event_type=event_type,
                reference=adapter.reference_of(body) if adapter.handles_event(body) else None,
                signature_valid=signature_valid,
                payload=body,
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.info(
                "webhook inbox write failed", extra={"gateway": adapter.gateway, "error": str(exc)}
            )
