"""FastAPI server for the WhatsApp advisor.

Run with:
    uv run uvicorn asesor.server:app --host 0.0.0.0 --port 8000

Point the Twilio WhatsApp sandbox / sender webhook at
``POST https://<host>/webhook/whatsapp``.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response

from asesor.api.routes import router
from asesor.channel import create_whatsapp_adapter
from asesor.config import load_settings

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


# ── Lifespan: build the adapter once ─────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Load settings and wire the channel adapter into app state."""
    settings = load_settings()
    application.state.settings = settings
    logger.info("Building WhatsApp adapter (policy: %s)…", settings.policy.name)
    application.state.adapter = create_whatsapp_adapter(settings)
    logger.info("Adapter ready.")
    yield


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Asesor WhatsApp",
    description="AI real-estate advisor over WhatsApp — property lookup and visit scheduling.",
    version="1.0.0",
    lifespan=lifespan,
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Asesor WhatsApp",
        "version": "1.0.0",
        "webhook": "/webhook/whatsapp",
        "health": "/health",
    }


if __name__ == "__main__":
    _settings = load_settings()
    logger.info("Starting server on %s:%d", _settings.server_host, _settings.server_port)
    uvicorn.run("asesor.server:app", host=_settings.server_host, port=_settings.server_port)
