from __future__ import annotations

from fastapi import APIRouter, Depends

from payrecon.domain.dtos import GatewaysHealthResponse
from payrecon.services.verification import VerificationService
from payrecon.wiring import get_verification_service

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check endpoint for load balancers."""
    return {"status": "ok"}


@router.get("/api/payments/health", response_model=GatewaysHealthResponse)
async def gateways_health(
    service: VerificationService = Depends(get_verification_service),
) -> GatewaysHealthResponse:
    """Credential and connectivity report for each gateway."""
    return await service.health()
