"""WhatsApp channel adapter: one inbound delivery in, one reply out.

Flow for a delivery:
  validate → normalise sender → log inbound → (greeting? canned reply)
  or (context → agent loop) → send → log outbound

Message-store writes are best effort: a failed write is logged and the
conversation carries on.  A failed send is the only terminal error.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from asesor.agent import AgentLoop, create_agent_loop
from asesor.config import AgentPolicy, Settings
from asesor.context import ConversationContextBuilder
from asesor.errors import WebhookValidationError
from asesor.models import InboundMessage, MessageRecord, WebhookOutcome
from asesor.prompts import GREETING_REPLIES, GREETING_REPLY, is_simple_greeting
from asesor.services.google_client import GoogleAPIClient, static_token
from asesor.services.knowledge import GoogleDocsKnowledgeSource, KnowledgeSource, StaticKnowledgeSource
from asesor.services.message_store import InMemoryMessageStore, MessageStore, SheetsMessageStore
from asesor.services.scheduling import GoogleCalendarSink, SheetsLeadRecorder
from asesor.services.twilio_client import WHATSAPP_PREFIX, OutboundChannel, TwilioWhatsAppChannel
from asesor.tools.dispatcher import create_tool_dispatcher

logger = logging.getLogger(__name__)


def normalize_sender(sender: str) -> str:
    """``whatsapp:+5213312345678`` → ``+5213312345678``."""
    sender = sender.strip()
    if sender.startswith(WHATSAPP_PREFIX):
        sender = sender[len(WHATSAPP_PREFIX):]
    return sender


class SenderLocks:
    """One lock per sender so deliveries from the same number run in order.

    An entry lives only while some delivery for that sender holds or waits
    on it, so the map never outgrows the number of in-flight senders.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._waiters: dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, sender_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(sender_id, threading.Lock())
            self._waiters[sender_id] = self._waiters.get(sender_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._waiters[sender_id] -= 1
                if self._waiters[sender_id] == 0:
                    del self._waiters[sender_id]
                    del self._locks[sender_id]


class WhatsAppChannelAdapter:
    def __init__(
        self,
        store: MessageStore,
        context_builder: ConversationContextBuilder,
        agent: AgentLoop,
        outbound: OutboundChannel,
        policy: AgentPolicy,
        *,
        greetings: Sequence[str] = GREETING_REPLIES,
        serialize_per_sender: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._context_builder = context_builder
        self._agent = agent
        self._outbound = outbound
        self._policy = policy
        self._greetings = tuple(greetings) or (GREETING_REPLY,)
        self._locks = SenderLocks() if serialize_per_sender else None
        self._rng = rng or random.Random()

    def handle(self, message: InboundMessage) -> WebhookOutcome:
        if not message.body or not message.body.strip() or not message.sender or not message.sender.strip():
            raise WebhookValidationError("Body and From are required")

        sender_id = normalize_sender(message.sender)
        if self._locks is None:
            return self._process(sender_id, message)
        with self._locks.hold(sender_id):
            return self._process(sender_id, message)

    # ── Internal ─────────────────────────────────────────────────────

    def _process(self, sender_id: str, message: InboundMessage) -> WebhookOutcome:
        body = message.body or ""
        self._log(MessageRecord.inbound(sender_id, body, message.correlation_id))

        if self._policy.greeting_fast_path and is_simple_greeting(body):
            logger.info("Simple greeting from %s, answering directly", sender_id)
            reply = self._greeting()
            delivery_id = self._outbound.send(sender_id, reply)
            self._log(MessageRecord.outbound(sender_id, reply, delivery_id))
            return WebhookOutcome(reply=reply, delivery_id=delivery_id, direct=True)

        context = self._context_builder.build(sender_id)
        outcome = self._agent.run(
            context.turns,
            body,
            sender_id=sender_id,
            transcript=context.transcript,
        )
        delivery_id = self._outbound.send(sender_id, outcome.text)
        self._log(MessageRecord.outbound(sender_id, outcome.text, delivery_id))
        return WebhookOutcome(reply=outcome.text, delivery_id=delivery_id)

    def _greeting(self) -> str:
        if self._policy.random_greeting:
            return self._rng.choice(self._greetings)
        return self._greetings[0]

    def _log(self, record: MessageRecord) -> None:
        try:
            self._store.append(record)
        except Exception:
            logger.exception("Could not log %s message for %s", record.direction.value, record.sender_id)


# ── Assembly ─────────────────────────────────────────────────────────


def create_whatsapp_adapter(
    settings: Settings,
    *,
    outbound: OutboundChannel | None = None,
    store: MessageStore | None = None,
) -> WhatsAppChannelAdapter:
    """Wire the adapter to Google, Twilio and Claude from *settings*.

    Without a Google sheet id the message log lives in memory; without a
    Docs id the catalogue comes from ``KNOWLEDGE_FILE``.
    """
    google = GoogleAPIClient(
        static_token(settings.google_access_token or ""),
        timeout=settings.http_timeout_seconds,
    )

    if store is None:
        if settings.google_sheet_id:
            store = SheetsMessageStore(google, settings.google_sheet_id)
        else:
            logger.warning("GOOGLE_SHEET_ID not set, message log is kept in memory")
            store = InMemoryMessageStore()

    knowledge: KnowledgeSource
    if settings.google_docs_id:
        knowledge = GoogleDocsKnowledgeSource(google, settings.google_docs_id)
    else:
        knowledge = StaticKnowledgeSource.from_file(settings.knowledge_file or "CATALOGO.md")

    dispatcher = create_tool_dispatcher(
        knowledge,
        GoogleCalendarSink(google, settings.google_calendar_id or "primary"),
        SheetsLeadRecorder(google, settings.google_sheet_id or ""),
    )

    if outbound is None:
        outbound = TwilioWhatsAppChannel(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_whatsapp_number,
            timeout=settings.http_timeout_seconds,
        )

    return WhatsAppChannelAdapter(
        store,
        ConversationContextBuilder(store, settings.policy.history_limit),
        create_agent_loop(settings, dispatcher),
        outbound,
        settings.policy,
        serialize_per_sender=settings.serialize_per_sender,
    )
