"""HTTP client for the Google Sheets, Docs and Calendar REST APIs.

Only the handful of endpoints the advisor needs are wrapped:

* Sheets ``spreadsheets.values.get`` / ``spreadsheets.values.append``
* Docs ``documents.get``
* Calendar ``events.insert``

Authentication is a bearer token returned by ``token_provider``; obtaining
and refreshing it (service account, workload identity…) happens outside
this package.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from asesor.services.http_client import REQUEST_TIMEOUT_SECONDS, RetryingHTTPClient

logger = logging.getLogger(__name__)

SHEETS_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
DOCS_BASE_URL = "https://docs.googleapis.com/v1/documents"
CALENDAR_BASE_URL = "https://www.googleapis.com/calendar/v3/calendars"


class GoogleAPIClient(RetryingHTTPClient):
    """Wrapper around the Google Workspace REST APIs with automatic retries."""

    service_name = "google"

    def __init__(
        self,
        token_provider: Callable[[], str],
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(
            httpx.Client(
                headers={"Content-Type": "application/json"},
                timeout=timeout,
            )
        )
        self._token_provider = token_provider

    def _request_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token_provider()}"}

    # ── Sheets ───────────────────────────────────────────────────────

    def get_values(self, spreadsheet_id: str, cell_range: str) -> list[list[str]]:
        """Return the rows of *cell_range* (missing trailing cells are omitted)."""
        data = self._request(
            "GET", f"{SHEETS_BASE_URL}/{spreadsheet_id}/values/{quote(cell_range)}",
        )
        return data.get("values", [])

    def append_values(self, spreadsheet_id: str, cell_range: str, rows: list[list[Any]]) -> dict[str, Any]:
        """Append *rows* after the last row of *cell_range*.

        Values are written ``RAW``: phone numbers keep their leading ``+`` and
        message bodies starting with ``=`` are stored as text, not formulas.
        """
        return self._request(
            "POST",
            f"{SHEETS_BASE_URL}/{spreadsheet_id}/values/{quote(cell_range)}:append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json_body={"values": rows},
        )

    # ── Docs ─────────────────────────────────────────────────────────

    def get_document(self, document_id: str) -> dict[str, Any]:
        return self._request("GET", f"{DOCS_BASE_URL}/{document_id}")

    # ── Calendar ─────────────────────────────────────────────────────

    def insert_event(self, calendar_id: str, event: dict[str, Any]) -> dict[str, Any]:
        """Create *event*; the response carries ``id`` and ``htmlLink``."""
        return self._request(
            "POST", f"{CALENDAR_BASE_URL}/{quote(calendar_id, safe='')}/events", json_body=event,
        )


def static_token(token: str) -> Callable[[], str]:
    """Token provider for a pre-provisioned access token."""

    def _provider() -> str:
        return token

    return _provider
