"""Tests for the Google REST client, its retry logic and the Google-backed
store, knowledge source, calendar sink and lead recorder."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest

from asesor.errors import DownstreamUnavailable
from asesor.models import REFERENCE_TIMEZONE, Direction, MessageRecord
from asesor.services.google_client import GoogleAPIClient, static_token
from asesor.services.http_client import INITIAL_BACKOFF_SECONDS, MAX_RETRIES
from asesor.services.knowledge import GoogleDocsKnowledgeSource, StaticKnowledgeSource, extract_document_text
from asesor.services.message_store import SheetsMessageStore
from asesor.services.scheduling import GoogleCalendarSink, LeadEntry, SheetsLeadRecorder

SENDER = "+5213312345678"

# ── Helpers ──────────────────────────────────────────────────────────


def _mock_response(data: dict, status_code: int = 200) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = data
    mock.text = str(data)
    return mock


@pytest.fixture
def client():
    return GoogleAPIClient(static_token("ya29.test"))


# ── Tests: request plumbing ──────────────────────────────────────────


class TestAuthorization:
    def test_bearer_token_is_sent(self, client):
        with patch.object(client._client, "request", return_value=_mock_response({"values": []})) as req:
            client.get_values("sheet-1", "Mensajes!A:E")
        assert req.call_args[1]["headers"] == {"Authorization": "Bearer ya29.test"}

    def test_token_provider_is_called_per_request(self):
        tokens = iter(["t1", "t2"])
        client = GoogleAPIClient(lambda: next(tokens))
        with patch.object(client._client, "request", return_value=_mock_response({})) as req:
            client.get_document("doc")
            client.get_document("doc")
        assert [c[1]["headers"]["Authorization"] for c in req.call_args_list] == ["Bearer t1", "Bearer t2"]


class TestAppendValues:
    def test_rows_are_written_raw(self, client):
        with patch.object(client._client, "request", return_value=_mock_response({})) as req:
            client.append_values("sheet-1", "Mensajes!A:E", [["2025-03-10T10:00:00", SENDER, "inbound", "=1+1", ""]])

        method, url = req.call_args[0]
        assert method == "POST"
        assert url.endswith("/sheet-1/values/Mensajes%21A%3AE:append")
        assert req.call_args[1]["params"] == {"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"}
        assert req.call_args[1]["json"] == {"values": [["2025-03-10T10:00:00", SENDER, "inbound", "=1+1", ""]]}

    def test_appended_sender_is_found_on_read_back(self, client):
        """A RAW write keeps the ``+`` so ``recent_for`` matches the sender."""
        written = []

        def _sheets(method, url, **kwargs):
            if method == "POST":
                written.extend(kwargs["json"]["values"])
                return _mock_response({})
            return _mock_response({"values": written})

        store = SheetsMessageStore(client, "sheet-1")
        with patch.object(client._client, "request", side_effect=_sheets):
            store.append(MessageRecord.inbound(SENDER, "Busco casa", "SM1"))
            records = store.recent_for(SENDER, 10)

        assert [(r.body, r.external_id) for r in records] == [("Busco casa", "SM1")]


class TestRetryLogic:
    @patch("asesor.services.http_client.time.sleep")
    def test_retries_on_timeout(self, mock_sleep, client):
        with patch.object(
            client._client, "request",
            side_effect=[httpx.TimeoutException("timeout"), _mock_response({"values": [["a"]]})],
        ):
            assert client.get_values("sheet-1", "A:E") == [["a"]]
        mock_sleep.assert_called_once_with(INITIAL_BACKOFF_SECONDS)

    @patch("asesor.services.http_client.time.sleep")
    def test_retries_on_500(self, mock_sleep, client):
        with patch.object(
            client._client, "request",
            side_effect=[_mock_response({"error": "x"}, 503), _mock_response({"id": "evt"})],
        ):
            assert client.insert_event("primary", {})["id"] == "evt"

    @patch("asesor.services.http_client.time.sleep")
    def test_does_not_retry_on_4xx(self, mock_sleep, client):
        with patch.object(client._client, "request", return_value=_mock_response({"error": "nope"}, 403)) as req:
            with pytest.raises(DownstreamUnavailable) as exc_info:
                client.get_document("doc")
        assert exc_info.value.status_code == 403
        assert req.call_count == 1
        mock_sleep.assert_not_called()

    @patch("asesor.services.http_client.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep, client):
        with patch.object(client._client, "request", side_effect=httpx.ConnectError("refused")) as req:
            with pytest.raises(DownstreamUnavailable, match="failed after"):
                client.get_document("doc")
        assert req.call_count == MAX_RETRIES
        assert mock_sleep.call_count == MAX_RETRIES - 1


# ── Tests: Sheets message store ──────────────────────────────────────


class TestSheetsMessageStore:
    def test_append_writes_one_row(self):
        google = MagicMock()
        store = SheetsMessageStore(google, "sheet-1")
        record = MessageRecord(
            sender_id=SENDER, direction=Direction.INBOUND, body="Hola", external_id="SM1",
            timestamp=datetime(2025, 3, 10, 15, 4, 5, tzinfo=REFERENCE_TIMEZONE),
        )

        store.append(record)

        google.append_values.assert_called_once_with(
            "sheet-1", "Mensajes!A:E", [["2025-03-10T15:04:05", SENDER, "inbound", "Hola", "SM1"]],
        )

    def test_recent_for_filters_sender_and_keeps_order(self):
        google = MagicMock()
        google.get_values.return_value = [
            ["timestamp", "telefono", "direccion", "mensaje", "messageId"],
            ["2025-03-10T10:00:00", SENDER, "inbound", "uno", "SM1"],
            ["2025-03-10T10:00:01", "+5210000000000", "inbound", "otro"],
            ["2025-03-10T10:00:02", SENDER, "outbound", "dos", "SM2"],
            ["2025-03-10T10:00:03", SENDER, "inbound", "tres"],
        ]
        records = SheetsMessageStore(google, "sheet-1").recent_for(SENDER, 2)

        assert [r.body for r in records] == ["dos", "tres"]
        assert records[0].direction is Direction.OUTBOUND
        assert records[1].external_id is None
        assert records[1].timestamp.tzinfo == REFERENCE_TIMEZONE

    def test_short_rows_parse_with_empty_body(self):
        google = MagicMock()
        google.get_values.return_value = [["2025-03-10T10:00:00", SENDER, "inbound"]]
        records = SheetsMessageStore(google, "sheet-1").recent_for(SENDER, 10)
        assert records[0].body == ""


# ── Tests: knowledge sources ─────────────────────────────────────────


class TestKnowledgeSources:
    def test_extracts_paragraph_text_runs(self):
        document = {"body": {"content": [
            {"sectionBreak": {}},
            {"paragraph": {"elements": [{"textRun": {"content": "Terreno Zapopan "}}]}},
            {"paragraph": {"elements": [{"textRun": {"content": "500 m²\n"}}, {"inlineObjectElement": {}}]}},
        ]}}
        assert extract_document_text(document) == "Terreno Zapopan 500 m²\n"

    def test_google_docs_lookup_ignores_query(self):
        google = MagicMock()
        google.get_document.return_value = {"body": {"content": [
            {"paragraph": {"elements": [{"textRun": {"content": "Catálogo completo"}}]}},
        ]}}
        source = GoogleDocsKnowledgeSource(google, "doc-1")
        assert source.lookup("casas") == source.lookup("terrenos") == "Catálogo completo"

    def test_static_source_without_text_is_unavailable(self, tmp_path):
        source = StaticKnowledgeSource.from_file(tmp_path / "missing.md")
        with pytest.raises(DownstreamUnavailable):
            source.lookup("casas")

    def test_static_source_reads_file(self, tmp_path):
        path = tmp_path / "catalogo.md"
        path.write_text("Casa Providencia", encoding="utf-8")
        assert StaticKnowledgeSource.from_file(path).lookup("x") == "Casa Providencia"


# ── Tests: calendar sink and lead recorder ───────────────────────────


class TestCalendarSink:
    def test_event_body_uses_reference_zone(self):
        google = MagicMock()
        google.insert_event.return_value = {"id": "evt_1", "htmlLink": "https://calendar.google.com/e/1"}
        start = datetime(2025, 3, 10, 15, 0, tzinfo=REFERENCE_TIMEZONE)

        ref = GoogleCalendarSink(google, "cal@group").create_event(
            "Visita", "Detalles", start, start + timedelta(minutes=30),
        )

        calendar_id, event = google.insert_event.call_args[0]
        assert calendar_id == "cal@group"
        assert event["start"] == {"dateTime": "2025-03-10T15:00:00-06:00", "timeZone": "America/Mexico_City"}
        assert event["end"]["dateTime"] == "2025-03-10T15:30:00-06:00"
        assert ref.event_id == "evt_1"
        assert ref.link == "https://calendar.google.com/e/1"


class TestLeadRecorder:
    def test_appends_lead_row(self):
        google = MagicMock()
        SheetsLeadRecorder(google, "sheet-1").record(
            LeadEntry(name="Ana", email="ana@example.com", phone=SENDER, appointment="Cita 10/03/2025 15:00 - link"),
        )
        spreadsheet_id, cell_range, rows = google.append_values.call_args[0]
        assert (spreadsheet_id, cell_range) == ("sheet-1", "Clientes!A:E")
        assert rows[0][1:] == ["ana@example.com", "Ana", SENDER, "Cita 10/03/2025 15:00 - link"]
