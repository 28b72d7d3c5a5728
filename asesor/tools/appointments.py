"""``agendar_cita`` — schedules a property visit and records the lead.

The calendar event is the primary effect.  The lead row written afterwards
is best effort: if it fails the visit is still reported as scheduled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from asesor.errors import DownstreamUnavailable
from asesor.models import REFERENCE_TIMEZONE, ToolResult
from asesor.services.scheduling import LeadEntry, LeadRecorder, SchedulingSink

logger = logging.getLogger(__name__)

TOOL_NAME = "agendar_cita"
DEFAULT_DURATION_MINUTES = 60
DISPLAY_FORMAT = "%d/%m/%Y %H:%M"


class AgendarCitaArgs(BaseModel):
    resumen: str = Field(..., description="Título de la cita")
    fecha: str = Field(..., description="Fecha YYYY-MM-DD")
    hora_inicio: str = Field(..., description="Hora HH:MM")
    descripcion: str = Field("", description="Descripción detallada")
    duracion_minutos: int | None = Field(None, description="Duración (default: 60)")
    email_cliente: str | None = Field(None, description="Email del cliente")
    nombre_cliente: str | None = Field(None, description="Nombre del cliente")
    telefono_cliente: str | None = Field(None, description="Teléfono del cliente")


@dataclass(frozen=True)
class VisitWindow:
    start: datetime
    end: datetime


class InvalidSchedule(ValueError):
    """Date, time or duration the model supplied cannot be used."""


def compute_visit_window(fecha: str, hora_inicio: str, duracion_minutos: int | None = None) -> VisitWindow:
    """Parse ``YYYY-MM-DD`` + ``HH:MM`` in the reference timezone and add the duration."""
    try:
        day = datetime.strptime(fecha.strip(), "%Y-%m-%d").date()
    except ValueError:
        raise InvalidSchedule(
            f'Fecha inválida "{fecha}". Vuelve a intentarlo con el formato YYYY-MM-DD (ej: 2025-03-10).'
        ) from None
    try:
        start_time = datetime.strptime(hora_inicio.strip(), "%H:%M").time()
    except ValueError:
        raise InvalidSchedule(
            f'Hora inválida "{hora_inicio}". Vuelve a intentarlo con el formato HH:MM en 24 horas (ej: 15:00).'
        ) from None

    minutes = DEFAULT_DURATION_MINUTES if duracion_minutos is None else duracion_minutos
    if minutes <= 0:
        raise InvalidSchedule(f"Duración inválida ({minutes} minutos). Debe ser mayor que cero.")

    start = datetime.combine(day, start_time, tzinfo=REFERENCE_TIMEZONE)
    return VisitWindow(start=start, end=start + timedelta(minutes=minutes))


def make_appointment_tool(sink: SchedulingSink, leads: LeadRecorder) -> BaseTool:
    """Bind the scheduling tool to a calendar sink and a lead recorder."""

    @tool(TOOL_NAME, args_schema=AgendarCitaArgs)
    def agendar_cita(
        resumen: str,
        fecha: str,
        hora_inicio: str,
        descripcion: str = "",
        duracion_minutos: int | None = None,
        email_cliente: str | None = None,
        nombre_cliente: str | None = None,
        telefono_cliente: str | None = None,
    ) -> ToolResult:
        """Agenda una cita cuando el cliente CONFIRME que desea una visita."""
        try:
            window = compute_visit_window(fecha, hora_inicio, duracion_minutos)
        except InvalidSchedule as e:
            return ToolResult.failure(str(e))

        description = (descripcion or "") + (f"\nEmail: {email_cliente}" if email_cliente else "")
        try:
            event = sink.create_event(resumen, description, window.start, window.end)
        except DownstreamUnavailable as e:
            logger.error("Failed to schedule visit: %s", e)
            return ToolResult.failure(f"No se pudo agendar la cita: {e}")

        inicio = window.start.strftime(DISPLAY_FORMAT)
        lead = LeadEntry(
            name=nombre_cliente or resumen,
            email=email_cliente,
            phone=telefono_cliente,
            appointment=f"Cita {inicio} - {event.link}",
        )
        try:
            leads.record(lead)
        except Exception:
            logger.exception("Visit %s scheduled but the lead row could not be saved", event.event_id)

        return ToolResult.success(event_id=event.event_id, event_link=event.link, inicio=inicio)

    return agendar_cita
