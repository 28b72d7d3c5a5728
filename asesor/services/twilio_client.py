"""Outbound WhatsApp delivery.

``TwilioWhatsAppChannel`` posts to the Twilio Messages API; ``ConsoleChannel``
prints replies instead and is used by the CLI.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

import httpx

from asesor.errors import OutboundDeliveryError
from asesor.services.http_client import REQUEST_TIMEOUT_SECONDS, RetryingHTTPClient

logger = logging.getLogger(__name__)

TWILIO_BASE_URL = "https://api.twilio.com/2010-04-01"
WHATSAPP_PREFIX = "whatsapp:"


class OutboundChannel(Protocol):
    def send(self, sender_id: str, text: str) -> str:
        """Deliver *text* to *sender_id* and return the delivery id."""
        ...


def to_whatsapp_address(number: str) -> str:
    return number if number.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{number}"


class TwilioWhatsAppChannel(RetryingHTTPClient):
    """Send WhatsApp messages through Twilio.

    Timeouts are not retried: a send that timed out may still have been
    delivered, and a duplicate reply is worse than a failed request.
    """

    service_name = "twilio"
    error_class = OutboundDeliveryError
    retry_timeouts = False

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        base_url: str = TWILIO_BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(
            httpx.Client(
                base_url=base_url,
                auth=(account_sid, auth_token),
                timeout=timeout,
            )
        )
        self._account_sid = account_sid
        self._from = to_whatsapp_address(from_number)

    def send(self, sender_id: str, text: str) -> str:
        data = self._request(
            "POST",
            f"/Accounts/{self._account_sid}/Messages.json",
            data={"From": self._from, "To": to_whatsapp_address(sender_id), "Body": text},
        )
        sid = data.get("sid", "")
        logger.info("WhatsApp message sent to %s (sid=%s)", sender_id, sid)
        return sid


class ConsoleChannel:
    """Prints replies to stdout; delivery ids are random."""

    def __init__(self, label: str = "Asesor") -> None:
        self._label = label

    def send(self, sender_id: str, text: str) -> str:
        print(f"\n{self._label}: {text}\n")
        return f"console-{uuid.uuid4().hex[:12]}"
