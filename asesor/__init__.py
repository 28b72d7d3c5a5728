"""Asesor WhatsApp — an AI real-estate advisor that answers over WhatsApp.

Architecture Overview
=====================

Every inbound WhatsApp message (a Twilio webhook delivery) flows through:

1. **Channel adapter** — validates the delivery, logs it to the message
   store, answers trivial greetings directly (fast path) and otherwise hands
   off to the agent.

2. **Context builder** — re-reads the sender's recent messages from the
   store and turns them into role-tagged turns (plus an optional
   "Cliente / Asesor" transcript digest for the system prompt).

3. **Agent loop** — a LangGraph state machine with two nodes:

   - **model** — invokes Claude with the system instructions, the turns and
     the two tool definitions.
   - **tools** — executes the first requested tool through the dispatcher
     and feeds the result back to the model.

   Routing: model → (tool use?) → tools → model (loop) → END, with a hard
   cap on tool iterations.

4. **Tool dispatcher** — runs ``consultar_documentos`` (Google Docs lookup)
   or ``agendar_cita`` (Google Calendar event + lead row in Google Sheets)
   and normalises every outcome, including failures, into a tool result.

The final answer is sent back via Twilio and logged as an outbound record.

Key Design Decisions
--------------------
- **No server-side session memory**: continuity comes from re-deriving the
  conversation from the message store on every delivery.
- **One loop, many policies**: prompt wording, history depth, model and
  greeting behaviour live in an immutable ``AgentPolicy``.
- **Tool failures are data**: they go back to the model, never to the
  webhook caller. Only a failed outbound send is terminal.
- **Resilience**: every HTTP collaborator has a request timeout and
  exponential-backoff retries.

Package Structure
-----------------
- ``asesor/agent.py`` — LangGraph agent loop
- ``asesor/channel.py`` — WhatsApp channel adapter
- ``asesor/context.py`` — conversation context builder
- ``asesor/config.py`` — settings and agent policies
- ``asesor/prompts.py`` — system instructions and canned texts
- ``asesor/server.py`` — FastAPI application
- ``asesor/main.py`` — CLI chat interface
- ``asesor/services/`` — external API clients (Google, Twilio, metrics)
- ``asesor/tools/`` — LangChain tools and the dispatcher
- ``asesor/api/`` — FastAPI routes and Pydantic schemas
"""
