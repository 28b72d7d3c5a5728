"""Plain data contracts passed between the adapter, the agent and the tools."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

# All timestamps and appointment times are anchored to this zone.
REFERENCE_TIMEZONE = ZoneInfo("America/Mexico_City")


def now_local() -> datetime:
    """Current instant in the reference timezone."""
    return datetime.now(REFERENCE_TIMEZONE)


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class MessageRecord:
    """One logged WhatsApp message. Immutable once appended."""

    sender_id: str
    direction: Direction
    body: str
    external_id: str | None = None
    timestamp: datetime = field(default_factory=now_local)

    @classmethod
    def inbound(cls, sender_id: str, body: str, external_id: str | None = None) -> MessageRecord:
        return cls(sender_id=sender_id, direction=Direction.INBOUND, body=body, external_id=external_id)

    @classmethod
    def outbound(cls, sender_id: str, body: str, external_id: str | None = None) -> MessageRecord:
        return cls(sender_id=sender_id, direction=Direction.OUTBOUND, body=body, external_id=external_id)


@dataclass(frozen=True)
class ToolInvocation:
    """A tool request emitted by the model."""

    name: str
    arguments: dict[str, Any]
    call_id: str

    @classmethod
    def from_tool_call(cls, tool_call: dict[str, Any]) -> ToolInvocation:
        """Build from a LangChain ``AIMessage.tool_calls`` entry."""
        return cls(
            name=tool_call.get("name", ""),
            arguments=dict(tool_call.get("args") or {}),
            call_id=tool_call.get("id") or "",
        )


@dataclass(frozen=True)
class ToolResult:
    """Tagged outcome of a tool execution: ``success`` or ``failure``.

    Always serialisable, so it can be sent back to the model as the content
    of a tool-result turn.
    """

    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def success(cls, **payload: Any) -> ToolResult:
        return cls(ok=True, payload=payload)

    @classmethod
    def failure(cls, error: str) -> ToolResult:
        return cls(ok=False, error=error)

    def to_payload(self) -> dict[str, Any]:
        if self.ok:
            return {"success": True, **self.payload}
        return {"success": False, "error": self.error}

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, default=str)


@dataclass(frozen=True)
class InboundMessage:
    """A parsed webhook delivery, before validation."""

    body: str | None
    sender: str | None
    correlation_id: str | None = None


@dataclass(frozen=True)
class WebhookOutcome:
    """What the adapter did with a delivery."""

    reply: str
    delivery_id: str
    direct: bool = False
