"""Error taxonomy shared by the webhook, the agent loop and the clients."""

from __future__ import annotations


class AsesorError(Exception):
    """Base class for every error raised by this package."""


class WebhookValidationError(AsesorError):
    """The inbound delivery is missing its body or sender (HTTP 400)."""


class DownstreamUnavailable(AsesorError):
    """An external service failed or timed out after all retries."""

    def __init__(self, service: str, message: str, status_code: int | None = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class OutboundDeliveryError(DownstreamUnavailable):
    """The final reply could not be sent; there is no fallback path."""


class MalformedModelOutput(AsesorError):
    """The model response has no usable text or tool invocation."""
