from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from payrecon.domain.dtos import VerifiedTransaction, VerifyResponse
from payrecon.services.verification import VerificationService
from payrecon.wiring import get_verification_service

router = APIRouter(prefix="/api/payments")
logger = logging.getLogger(__name__)


def _respond(status_code: int, body: VerifyResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.get("/verify")
@router.get("/verify/{reference}")
async def verify_payment(
    reference: str | None = None,
    service: VerificationService = Depends(get_verification_service),
) -> JSONResponse:
    """Look a reference up on each gateway's status API in turn."""
    reference = (reference or "").strip()
    if not reference:
        return _respond(400, VerifyResponse(success=False, error="Payment reference is required"))
    try:
        result = await service.verify(reference)
    except Exception as exc:  # noqa: BLE001
        logger.error("payment verification error", extra={"reference": reference, "error": str(exc)})
        return _respond(500, VerifyResponse(success=False, error="Verification service unavailable"))
    if result is None:
        return _respond(404, VerifyResponse(success=False, error="Payment verification failed"))
    data = VerifiedTransaction(
        reference=reference,
        status=result.status.value if result.status else "UNKNOWN",
        amount=float(result.amount) if result.amount is not None else None,
        currency=result.currency,
        gateway=result.gateway,
        gateway_reference=result.gateway_reference,
        verified_at=datetime.now(timezone.utc),
    )
    return _respond(200, VerifyResponse(success=True, data=data))
