"""Tests for outbound WhatsApp delivery."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from asesor.errors import OutboundDeliveryError
from asesor.services.twilio_client import ConsoleChannel, TwilioWhatsAppChannel, to_whatsapp_address


def _mock_response(data: dict, status_code: int = 201) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = data
    mock.text = str(data)
    return mock


@pytest.fixture
def channel():
    return TwilioWhatsAppChannel("ACtest000", "token", "+14155238886")


class TestAddresses:
    def test_adds_prefix(self):
        assert to_whatsapp_address("+5213312345678") == "whatsapp:+5213312345678"

    def test_keeps_existing_prefix(self):
        assert to_whatsapp_address("whatsapp:+1555") == "whatsapp:+1555"


class TestSend:
    def test_posts_message_and_returns_sid(self, channel):
        with patch.object(channel._client, "request", return_value=_mock_response({"sid": "SM_abc"})) as req:
            sid = channel.send("+5213312345678", "¡Hola! 👋")

        assert sid == "SM_abc"
        method, url = req.call_args[0]
        assert method == "POST"
        assert url == "/Accounts/ACtest000/Messages.json"
        assert req.call_args[1]["data"] == {
            "From": "whatsapp:+14155238886",
            "To": "whatsapp:+5213312345678",
            "Body": "¡Hola! 👋",
        }

    def test_client_error_raises_delivery_error(self, channel):
        with patch.object(channel._client, "request", return_value=_mock_response({"message": "auth"}, 401)):
            with pytest.raises(OutboundDeliveryError) as exc_info:
                channel.send("+5213312345678", "Hola")
        assert exc_info.value.status_code == 401

    @patch("asesor.services.http_client.time.sleep")
    def test_timeout_is_not_retried(self, mock_sleep, channel):
        with patch.object(channel._client, "request", side_effect=httpx.ReadTimeout("slow")) as req:
            with pytest.raises(OutboundDeliveryError, match="timed out"):
                channel.send("+5213312345678", "Hola")
        assert req.call_count == 1
        mock_sleep.assert_not_called()


class TestConsoleChannel:
    def test_prints_reply(self, capsys):
        delivery_id = ConsoleChannel().send("+5213312345678", "Hola desde la consola")
        assert "Hola desde la consola" in capsys.readouterr().out
        assert delivery_id.startswith("console-")
