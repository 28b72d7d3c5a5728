"""Shared test fixtures for the WhatsApp advisor test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest

from asesor.config import POLICIES
from asesor.services.message_store import InMemoryMessageStore


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    ``load_settings()`` (run by the server lifespan) fails without them.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest000")
    os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-twilio-token")
    os.environ.setdefault("TWILIO_WHATSAPP_NUMBER", "+14155238886")


@pytest.fixture
def policy():
    return POLICIES["contextual"]


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def scripted_llm():
    """Factory for a mock completion service that returns *responses* in order."""

    def _make(*responses) -> MagicMock:
        llm = MagicMock()
        llm.invoke.side_effect = list(responses)
        return llm

    return _make
