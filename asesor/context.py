"""Conversation context builder.

Turns a sender's recent message records into role-tagged LangChain turns
for the model, and into a plain "Cliente: … / Asesor: …" transcript that
some policies append to the system prompt as an explicit digest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from asesor.models import Direction, MessageRecord
from asesor.services.message_store import MessageStore

logger = logging.getLogger(__name__)

SPEAKER_LABELS = {
    Direction.INBOUND: "Cliente",
    Direction.OUTBOUND: "Asesor",
}


@dataclass(frozen=True)
class ConversationContext:
    turns: list[BaseMessage] = field(default_factory=list)
    transcript: str = ""


def record_to_turn(record: MessageRecord) -> BaseMessage:
    if record.direction is Direction.INBOUND:
        return HumanMessage(content=record.body)
    return AIMessage(content=record.body)


def render_transcript(records: list[MessageRecord]) -> str:
    return "\n".join(f"{SPEAKER_LABELS[r.direction]}: {r.body}" for r in records)


class ConversationContextBuilder:
    """Read-only view over the message store for one sender at a time."""

    def __init__(self, store: MessageStore, history_limit: int) -> None:
        self._store = store
        self._history_limit = history_limit

    def build(self, sender_id: str) -> ConversationContext:
        """Last ``history_limit`` messages, oldest first, empty bodies dropped.

        A store failure yields an empty context: the conversation goes on
        without history instead of failing the delivery.
        """
        try:
            records = self._store.recent_for(sender_id, self._history_limit)
        except Exception:
            logger.warning("History unavailable for %s, continuing without context", sender_id, exc_info=True)
            return ConversationContext()

        usable = [r for r in records if r.body and r.body.strip()]
        logger.debug("Context for %s: %d of %d records usable", sender_id, len(usable), len(records))
        return ConversationContext(
            turns=[record_to_turn(r) for r in usable],
            transcript=render_transcript(usable),
        )
