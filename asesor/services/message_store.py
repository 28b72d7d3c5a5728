"""Append-only log of WhatsApp messages, keyed by sender.

``SheetsMessageStore`` keeps one row per message in the ``Mensajes`` sheet
(timestamp, phone, direction, text, message id).  ``InMemoryMessageStore``
holds the same records in process memory for the CLI and tests.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Protocol

from asesor.models import REFERENCE_TIMEZONE, Direction, MessageRecord
from asesor.services.google_client import GoogleAPIClient

logger = logging.getLogger(__name__)

MESSAGES_RANGE = "Mensajes!A:E"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class MessageStore(Protocol):
    def append(self, record: MessageRecord) -> None: ...

    def recent_for(self, sender_id: str, limit: int) -> list[MessageRecord]:
        """Last *limit* records for *sender_id*, oldest first."""
        ...


class InMemoryMessageStore:
    """Thread-safe list of records in append order."""

    def __init__(self) -> None:
        self._records: list[MessageRecord] = []
        self._lock = threading.Lock()

    def append(self, record: MessageRecord) -> None:
        with self._lock:
            self._records.append(record)

    def recent_for(self, sender_id: str, limit: int) -> list[MessageRecord]:
        if limit <= 0:
            return []
        with self._lock:
            matching = [r for r in self._records if r.sender_id == sender_id]
        return matching[-limit:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SheetsMessageStore:
    """Message log stored as rows of a Google Sheet."""

    def __init__(self, client: GoogleAPIClient, spreadsheet_id: str, cell_range: str = MESSAGES_RANGE):
        self._client = client
        self._spreadsheet_id = spreadsheet_id
        self._range = cell_range

    def append(self, record: MessageRecord) -> None:
        row = [
            record.timestamp.astimezone(REFERENCE_TIMEZONE).strftime(TIMESTAMP_FORMAT),
            record.sender_id,
            record.direction.value,
            record.body,
            record.external_id or "",
        ]
        self._client.append_values(self._spreadsheet_id, self._range, [row])
        logger.debug("Logged %s message for %s", record.direction.value, record.sender_id)

    def recent_for(self, sender_id: str, limit: int) -> list[MessageRecord]:
        if limit <= 0:
            return []
        rows = self._client.get_values(self._spreadsheet_id, self._range)
        records = [
            record
            for record in (_row_to_record(row) for row in rows if len(row) > 1 and row[1] == sender_id)
            if record is not None
        ]
        return records[-limit:]


def _row_to_record(row: list[str]) -> MessageRecord | None:
    """Parse one sheet row; rows with an unknown direction (e.g. the header) are skipped."""
    cells = row + [""] * (5 - len(row))
    timestamp_raw, sender_id, direction_raw, body, external_id = cells[:5]
    try:
        direction = Direction(direction_raw)
    except ValueError:
        return None
    try:
        timestamp = datetime.strptime(timestamp_raw, TIMESTAMP_FORMAT).replace(tzinfo=REFERENCE_TIMEZONE)
    except ValueError:
        timestamp = datetime.fromtimestamp(0, REFERENCE_TIMEZONE)
    return MessageRecord(
        sender_id=sender_id,
        direction=direction,
        body=body,
        external_id=external_id or None,
        timestamp=timestamp,
    )
