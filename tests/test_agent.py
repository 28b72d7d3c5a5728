"""Tests for the bounded tool-calling agent loop.

Covers:
  - Routing decisions after each model response
  - Text extraction from Anthropic-style content blocks
  - Full loop runs against scripted completion services
  - The iteration guard against a model that never stops asking for tools
"""

from __future__ import annotations

import json
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END

from asesor.agent import AgentLoop, create_agent_loop, first_text, next_step, wants_tool
from asesor.config import Settings
from asesor.errors import MalformedModelOutput
from asesor.models import ToolResult

# ── Helpers ──────────────────────────────────────────────────────────


def _ai(text="", tool_calls=None, stop_reason=None) -> AIMessage:
    """An AIMessage shaped like a ChatAnthropic response."""
    if stop_reason is None:
        stop_reason = "tool_use" if tool_calls else "end_turn"
    return AIMessage(content=text, tool_calls=tool_calls or [], response_metadata={"stop_reason": stop_reason})


def _lookup_call(call_id="toolu_01", query="terreno Zapopan 2 millones") -> dict:
    return {"name": "consultar_documentos", "args": {"query": query}, "id": call_id}


def _dispatcher(result: ToolResult | None = None) -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.dispatch.return_value = result or ToolResult.success(content="catálogo", query="q")
    return dispatcher


def _state(message, iterations=0):
    return {"messages": [message], "system_prompt": "", "sender_id": None, "tool_iterations": iterations}


# ── TestResponseInspection ───────────────────────────────────────────


class TestResponseInspection:
    def test_wants_tool_reads_stop_reason(self):
        assert wants_tool(_ai(tool_calls=[_lookup_call()])) is True
        assert wants_tool(_ai("listo")) is False

    def test_first_text_from_plain_string(self):
        assert first_text(_ai("Hola")) == "Hola"

    def test_first_text_from_content_blocks(self):
        message = AIMessage(content=[
            {"type": "tool_use", "id": "toolu_01", "name": "consultar_documentos", "input": {}},
            {"type": "text", "text": "Te comparto opciones"},
            {"type": "text", "text": "segundo bloque"},
        ])
        assert first_text(message) == "Te comparto opciones"

    def test_first_text_raises_when_no_text(self):
        with pytest.raises(MalformedModelOutput):
            first_text(AIMessage(content=[{"type": "tool_use", "id": "x", "name": "n", "input": {}}]))


# ── TestNextStep ─────────────────────────────────────────────────────


class TestNextStep:
    def test_tool_use_with_call_routes_to_tools(self):
        assert next_step(_state(_ai(tool_calls=[_lookup_call()])), max_tool_iterations=6) == "tools"

    def test_end_turn_routes_to_end(self):
        assert next_step(_state(_ai("Aquí tienes")), max_tool_iterations=6) == END

    def test_tool_use_without_call_routes_to_end(self):
        assert next_step(_state(_ai("parcial", stop_reason="tool_use")), max_tool_iterations=6) == END

    def test_tool_calls_without_tool_use_signal_route_to_end(self):
        message = _ai("texto", tool_calls=[_lookup_call()], stop_reason="max_tokens")
        assert next_step(_state(message), max_tool_iterations=6) == END

    def test_guard_reached_routes_to_end(self):
        assert next_step(_state(_ai(tool_calls=[_lookup_call()]), iterations=6), max_tool_iterations=6) == END


# ── TestAgentLoopRun ─────────────────────────────────────────────────


class TestAgentLoopRun:
    def test_direct_answer_uses_one_completion(self, policy, scripted_llm):
        llm = scripted_llm(_ai("¿Qué tipo de propiedad buscas? 🏡"))
        dispatcher = _dispatcher()
        outcome = AgentLoop(policy, dispatcher, llm).run([], "Quiero comprar")

        assert outcome.text == "¿Qué tipo de propiedad buscas? 🏡"
        assert outcome.tool_iterations == 0
        assert llm.invoke.call_count == 1
        dispatcher.dispatch.assert_not_called()

    def test_seed_has_system_history_and_inbound(self, policy, scripted_llm):
        llm = scripted_llm(_ai("ok"))
        history = [HumanMessage(content="Busco terreno"), AIMessage(content="¿En qué zona?")]
        AgentLoop(policy, _dispatcher(), llm).run(history, "Zapopan")

        sent = llm.invoke.call_args[0][0]
        assert isinstance(sent[0], SystemMessage)
        assert sent[0].content == policy.system_instructions
        assert [m.content for m in sent[1:]] == ["Busco terreno", "¿En qué zona?", "Zapopan"]

    def test_inbound_already_in_history_is_not_duplicated(self, policy, scripted_llm):
        llm = scripted_llm(_ai("ok"))
        AgentLoop(policy, _dispatcher(), llm).run([HumanMessage(content="Hola, busco casa")], "Hola, busco casa")

        sent = llm.invoke.call_args[0][0]
        assert [m.content for m in sent[1:]] == ["Hola, busco casa"]

    def test_tool_round_trip(self, policy, scripted_llm):
        llm = scripted_llm(
            _ai("Dame un momento…", tool_calls=[_lookup_call()]),
            _ai("Encontré 2 terrenos en Zapopan 📍"),
        )
        dispatcher = _dispatcher(ToolResult.success(content="Terreno Valle Real", query="q"))
        outcome = AgentLoop(policy, dispatcher, llm).run([], "terreno en Zapopan", sender_id="+521")

        assert outcome.text == "Encontré 2 terrenos en Zapopan 📍"
        assert outcome.tool_iterations == 1
        assert llm.invoke.call_count == 2

        invocation = dispatcher.dispatch.call_args[0][0]
        assert invocation.name == "consultar_documentos"
        assert invocation.call_id == "toolu_01"
        assert dispatcher.dispatch.call_args[1]["sender_id"] == "+521"

        second_call = llm.invoke.call_args_list[1][0][0]
        assert isinstance(second_call[-2], AIMessage)
        tool_turn = second_call[-1]
        assert isinstance(tool_turn, ToolMessage)
        assert tool_turn.tool_call_id == "toolu_01"
        assert json.loads(tool_turn.content) == {"success": True, "content": "Terreno Valle Real", "query": "q"}

    def test_failed_tool_result_is_fed_back_as_error(self, policy, scripted_llm):
        llm = scripted_llm(
            _ai(tool_calls=[_lookup_call()]),
            _ai("Por ahora no puedo consultar el catálogo."),
        )
        dispatcher = _dispatcher(ToolResult.failure("Server error 503"))
        outcome = AgentLoop(policy, dispatcher, llm).run([], "casas")

        tool_turn = llm.invoke.call_args_list[1][0][0][-1]
        assert tool_turn.status == "error"
        assert json.loads(tool_turn.content) == {"success": False, "error": "Server error 503"}
        assert outcome.text == "Por ahora no puedo consultar el catálogo."

    def test_only_first_tool_call_is_executed(self, policy, scripted_llm):
        schedule_call = {"name": "agendar_cita", "args": {"resumen": "Visita"}, "id": "toolu_02"}
        llm = scripted_llm(
            _ai(tool_calls=[_lookup_call("toolu_01"), schedule_call]),
            _ai("Listo"),
        )
        dispatcher = _dispatcher()
        AgentLoop(policy, dispatcher, llm).run([], "casas")

        assert dispatcher.dispatch.call_count == 1
        tool_turns = [m for m in llm.invoke.call_args_list[1][0][0] if isinstance(m, ToolMessage)]
        assert [t.tool_call_id for t in tool_turns] == ["toolu_01", "toolu_02"]
        assert json.loads(tool_turns[1].content)["success"] is False

    def test_malformed_tool_signal_exits_with_available_text(self, policy, scripted_llm):
        llm = scripted_llm(_ai("Déjame revisar", stop_reason="tool_use"))
        dispatcher = _dispatcher()
        outcome = AgentLoop(policy, dispatcher, llm).run([], "casas")

        assert outcome.text == "Déjame revisar"
        dispatcher.dispatch.assert_not_called()

    def test_no_text_uses_fallback(self, policy, scripted_llm):
        llm = scripted_llm(AIMessage(content=[], response_metadata={"stop_reason": "end_turn"}))
        outcome = AgentLoop(policy, _dispatcher(), llm).run([], "casas")
        assert outcome.text == policy.fallback_text

    def test_completion_failure_propagates(self, policy):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("Anthropic down")
        with pytest.raises(RuntimeError, match="Anthropic down"):
            AgentLoop(policy, _dispatcher(), llm).run([], "casas")

    def test_transcript_is_appended_when_policy_enables_it(self, policy, scripted_llm):
        llm = scripted_llm(_ai("ok"))
        summary_policy = replace(policy, include_transcript=True)
        AgentLoop(summary_policy, _dispatcher(), llm).run([], "casas", transcript="Cliente: Busco casa")

        system = llm.invoke.call_args[0][0][0]
        assert system.content.startswith(policy.system_instructions)
        assert system.content.endswith("Cliente: Busco casa")

    def test_transcript_ignored_when_policy_disables_it(self, policy, scripted_llm):
        llm = scripted_llm(_ai("ok"))
        AgentLoop(policy, _dispatcher(), llm).run([], "casas", transcript="Cliente: Busco casa")
        assert llm.invoke.call_args[0][0][0].content == policy.system_instructions


# ── TestIterationGuard ───────────────────────────────────────────────


class TestIterationGuard:
    @pytest.mark.parametrize("max_iterations", [1, 3, 6])
    def test_endless_tool_requests_stop_at_guard(self, policy, max_iterations):
        llm = MagicMock()
        llm.invoke.side_effect = lambda *_: _ai("Sigo buscando…", tool_calls=[_lookup_call()])
        dispatcher = _dispatcher()
        bounded = replace(policy, max_tool_iterations=max_iterations)

        outcome = AgentLoop(bounded, dispatcher, llm).run([], "casas")

        assert outcome.stopped_by_guard is True
        assert outcome.tool_iterations == max_iterations
        assert dispatcher.dispatch.call_count == max_iterations
        assert llm.invoke.call_count == max_iterations + 1
        assert outcome.text == "Sigo buscando…"

    def test_guard_without_text_uses_fallback(self, policy):
        llm = MagicMock()
        llm.invoke.side_effect = lambda *_: _ai(tool_calls=[_lookup_call()])
        outcome = AgentLoop(replace(policy, max_tool_iterations=2), _dispatcher(), llm).run([], "casas")
        assert outcome.stopped_by_guard is True
        assert outcome.text == policy.fallback_text


# ── TestCreateAgentLoop ──────────────────────────────────────────────


class TestCreateAgentLoop:
    @patch("asesor.agent._build_llm")
    def test_binds_dispatcher_tools(self, mock_build, policy):
        settings = Settings(
            anthropic_api_key="k", twilio_account_sid="AC", twilio_auth_token="t",
            twilio_whatsapp_number="+1", policy=policy,
        )
        dispatcher = _dispatcher()
        dispatcher.tools = ["tool-a", "tool-b"]

        loop = create_agent_loop(settings, dispatcher)

        mock_build.assert_called_once_with(settings, ["tool-a", "tool-b"])
        assert loop.policy is policy
