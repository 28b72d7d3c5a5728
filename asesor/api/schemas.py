"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    """Acknowledgement returned to Twilio after a delivery was handled."""

    success: bool = True
    sid: str = Field(..., description="Delivery id of the reply that was sent")
    direct: bool = Field(False, description="True when the greeting fast path answered")


class WebhookError(BaseModel):
    error: str
    message: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "asesor-whatsapp"
