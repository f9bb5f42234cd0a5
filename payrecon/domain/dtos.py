from __future__ import annotations

from datetime import datetime
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from .enums import Gateway


class WebhookAck(BaseModel):
    """Envelope returned to gateways after a callback."""

    success: bool
    message: str | None = None
    error: str | None = None


class VerifiedTransaction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reference: str
    status: str
    amount: float | None = None
    currency: str | None = None
    gateway: Gateway
    gateway_reference: str | None = Field(default=None, alias="gatewayReference")
    verified_at: datetime = Field(alias="verifiedAt")


class VerifyResponse(BaseModel):
    """Response of the manual verification endpoint."""

    success: bool
    data: VerifiedTransaction | None = None
    error: str | None = None


class GatewayHealth(BaseModel):
    configured: bool
    tested: bool = False
    working: bool = False
    error: str | None = None


class GatewaysHealthResponse(BaseModel):
    """Per-gateway connectivity report."""

    status: str
    environment: str
    timestamp: datetime
    gateways: Dict[str, GatewayHealth]
