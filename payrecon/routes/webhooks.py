from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from payrecon.domain.enums import Gateway
from payrecon.services.webhook_dispatcher import WebhookDispatcher
from payrecon.wiring import get_dispatcher

router = APIRouter(prefix="/api/payments")


async def _handle(gateway: Gateway, request: Request, dispatcher: WebhookDispatcher) -> JSONResponse:
    # Raw bytes are needed for signatures computed over the exact body
    raw_body = await request.body()
    status_code, ack = await dispatcher.dispatch(gateway, raw_body, request.headers)
    return JSONResponse(status_code=status_code, content=ack.model_dump(exclude_none=True))


@router.post("/webhook/flutterwave")
async def flutterwave_webhook(
    request: Request, dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> JSONResponse:
    """Flutterwave `charge.completed` callbacks, signed via the `verif-hash` header."""
    return await _handle(Gateway.FLUTTERWAVE, request, dispatcher)


@router.post("/webhook/paystack")
async def paystack_webhook(
    request: Request, dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> JSONResponse:
    """Paystack callbacks, signed via the `x-paystack-signature` header."""
    return await _handle(Gateway.PAYSTACK, request, dispatcher)


@router.post("/webhook/opay")
async def opay_webhook(
    request: Request, dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> JSONResponse:
    """OPay transaction-status callbacks; always acknowledged unless processing crashes."""
    return await _handle(Gateway.OPAY, request, dispatcher)
