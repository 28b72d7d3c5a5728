"""Appointment scheduling and lead capture.

``GoogleCalendarSink`` creates visit events; ``SheetsLeadRecorder`` appends a
row to the ``Clientes`` sheet for every scheduled visit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from asesor.models import REFERENCE_TIMEZONE, now_local
from asesor.services.google_client import GoogleAPIClient

logger = logging.getLogger(__name__)

LEADS_RANGE = "Clientes!A:E"


@dataclass(frozen=True)
class EventReference:
    event_id: str
    link: str


@dataclass(frozen=True)
class LeadEntry:
    name: str
    email: str | None
    phone: str | None
    appointment: str


class SchedulingSink(Protocol):
    def create_event(
        self, summary: str, description: str, start: datetime, end: datetime,
    ) -> EventReference: ...


class LeadRecorder(Protocol):
    def record(self, lead: LeadEntry) -> None: ...


class GoogleCalendarSink:
    """Visits as Google Calendar events in the reference timezone."""

    def __init__(self, client: GoogleAPIClient, calendar_id: str) -> None:
        self._client = client
        self._calendar_id = calendar_id

    def create_event(
        self, summary: str, description: str, start: datetime, end: datetime,
    ) -> EventReference:
        tz_name = str(REFERENCE_TIMEZONE)
        event = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat(timespec="seconds"), "timeZone": tz_name},
            "end": {"dateTime": end.isoformat(timespec="seconds"), "timeZone": tz_name},
        }
        logger.info("Creating calendar event %r at %s", summary, event["start"]["dateTime"])
        data = self._client.insert_event(self._calendar_id, event)
        return EventReference(event_id=data.get("id", ""), link=data.get("htmlLink", ""))


class SheetsLeadRecorder:
    """One ``Clientes`` row per scheduled visit."""

    def __init__(self, client: GoogleAPIClient, spreadsheet_id: str, cell_range: str = LEADS_RANGE):
        self._client = client
        self._spreadsheet_id = spreadsheet_id
        self._range = cell_range

    def record(self, lead: LeadEntry) -> None:
        row = [
            now_local().isoformat(timespec="milliseconds"),
            lead.email or "",
            lead.name or "",
            lead.phone or "",
            lead.appointment,
        ]
        self._client.append_values(self._spreadsheet_id, self._range, [row])
        logger.info("Lead saved for %s", lead.name)
