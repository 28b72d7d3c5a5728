"""FastAPI route definitions for the WhatsApp webhook."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from asesor.api.schemas import HealthResponse, WebhookAck, WebhookError
from asesor.errors import WebhookValidationError
from asesor.models import InboundMessage

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_adapter(request: Request):
    """Retrieve the channel adapter built during the FastAPI lifespan."""
    adapter = getattr(request.app.state, "adapter", None)
    if adapter is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return adapter


async def _read_fields(request: Request) -> dict[str, Any]:
    """Twilio posts form data; JSON bodies are accepted for manual testing."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}
    form = await request.form()
    return dict(form)


def _error(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=WebhookError(error=error, message=message).model_dump(exclude_none=True),
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/webhook/whatsapp", response_model=WebhookAck)
async def whatsapp_webhook(http_request: Request):
    """Handle one inbound WhatsApp delivery and reply to the sender.

    ``adapter.handle()`` blocks on Claude, Google and Twilio, so it runs in
    the default thread pool via ``asyncio.to_thread``.
    """
    adapter = _get_adapter(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    fields = await _read_fields(http_request)
    message = InboundMessage(
        body=fields.get("Body"),
        sender=fields.get("From"),
        correlation_id=fields.get("MessageSid"),
    )
    logger.info("[%s] WhatsApp from %s | %r", request_id, message.sender, message.body)

    try:
        outcome = await asyncio.to_thread(adapter.handle, message)
    except WebhookValidationError:
        logger.warning("[%s] Rejected delivery without Body/From", request_id)
        return _error(400, "Faltan parámetros")
    except Exception:
        # Full traceback in the logs only.
        logger.exception("[%s] Error processing WhatsApp delivery", request_id)
        return _error(500, "Error en webhook", "An internal error occurred. Please try again.")

    return WebhookAck(sid=outcome.delivery_id, direct=outcome.direct)
