from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable

from payrecon.config import Settings
from payrecon.domain.dtos import GatewayHealth, GatewaysHealthResponse
from payrecon.domain.enums import Gateway
from payrecon.domain.models import VerificationResult
from payrecon.providers.base import GatewayAdapter


class VerificationService:
    """Manual transaction lookup across gateways and gateway health probing."""

    def __init__(self, adapters: Dict[Gateway, GatewayAdapter], cfg: Settings):
        self.adapters = adapters
        self.settings = cfg
        self.logger = logging.getLogger(__name__)

    def _ordered(self) -> Iterable[GatewayAdapter]:
        return self.adapters.values()

    async def verify(self, reference: str) -> VerificationResult | None:
        """Return the first gateway result that confirms the reference, or None."""
        self.logger.info("verifying payment", extra={"reference": reference})
        for adapter in self._ordered():
            result = await adapter.verify_transaction(reference)
            if result.verified:
                self.logger.info(
                    "payment verification succeeded",
                    extra={"reference": reference, "gateway": result.gateway, "status": result.status},
                )
                return result
            self.logger.info(
                "gateway could not verify reference",
                extra={"reference": reference, "gateway": adapter.gateway, "error": result.error},
            )
        self.logger.warning("payment verification failed", extra={"reference": reference})
        return None

    async def health(self) -> GatewaysHealthResponse:
        adapters = list(self._ordered())
        probes = await asyncio.gather(*(adapter.probe() for adapter in adapters), return_exceptions=True)
        gateways: Dict[str, GatewayHealth] = {}
        for adapter, probe in zip(adapters, probes):
            if isinstance(probe, BaseException):
                probe = GatewayHealth(configured=adapter.configured, tested=True, working=False, error=str(probe))
            gateways[adapter.gateway.value.lower()] = probe
        healthy = all(g.working for g in gateways.values() if g.configured) and any(
            g.configured for g in gateways.values()
        )
        return GatewaysHealthResponse(
            status="ok" if healthy else "degraded",
            environment=self.settings.app_env,
            timestamp=datetime.now(timezone.utc),
            gateways=gateways,
        )
