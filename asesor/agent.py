"""LangGraph tool-calling loop for the WhatsApp advisor.

Architecture:
  A two-node StateGraph:

    1. **model** — one Claude completion with the system instructions, the
                   conversation turns and the bound tool definitions
    2. **tools** — executes the *first* tool call of the last response via
                   the dispatcher and appends its result

  Routing:
    model → (stop_reason == "tool_use" and a tool call and guard not hit?) → tools → model
          → otherwise → END

  Only the first tool call of a response is executed; any other call in the
  same response gets a "not executed" result so the transcript stays valid
  for the API.  ``max_tool_iterations`` bounds the number of trips through
  ``tools``: once reached the loop ends with whatever text the last response
  carried, or the policy's fallback text.

  The state is built fresh for every delivery and thrown away afterwards;
  conversational memory comes from the message store, not from a
  checkpointer.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from asesor.config import AgentPolicy, Settings
from asesor.errors import MalformedModelOutput
from asesor.models import ToolInvocation, ToolResult
from asesor.prompts import build_system_prompt
from asesor.services.metrics import metrics
from asesor.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

TOOL_USE_STOP_REASON = "tool_use"
NOT_EXECUTED_ERROR = "No ejecutada: solo se ejecuta una herramienta por turno. Solicítala de nuevo si la necesitas."


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """One delivery's session.

    ``messages`` uses the ``add_messages`` reducer so nodes only return what
    they append.  ``tool_iterations`` counts completed trips through the
    tools node and is what the guard compares against.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    system_prompt: str
    sender_id: str | None
    tool_iterations: int


@dataclass(frozen=True)
class AgentOutcome:
    text: str
    tool_iterations: int
    stopped_by_guard: bool = False


# ── Response inspection ──────────────────────────────────────────────


def wants_tool(message: BaseMessage) -> bool:
    """True when the model stopped because it wants a tool executed."""
    metadata = getattr(message, "response_metadata", None) or {}
    return metadata.get("stop_reason") == TOOL_USE_STOP_REASON


def first_text(message: BaseMessage) -> str:
    """Return the first non-empty text block of *message*.

    Plain string content counts as a single text block.
    """
    content = message.content
    if isinstance(content, str):
        if content.strip():
            return content
    else:
        for block in content:
            if isinstance(block, str) and block.strip():
                return block
            if isinstance(block, dict) and block.get("type") == "text" and (block.get("text") or "").strip():
                return block["text"]
    raise MalformedModelOutput("response has no text block")


def next_step(state: AgentState, max_tool_iterations: int) -> str:
    """Conditional edge after the model node: ``"tools"`` or ``END``."""
    last = state["messages"][-1]
    if not isinstance(last, AIMessage) or not wants_tool(last):
        return END
    if not last.tool_calls:
        logger.warning("Model signalled tool use without a tool call; finishing early")
        return END
    if state.get("tool_iterations", 0) >= max_tool_iterations:
        logger.warning(
            "Tool iteration guard reached (%d); finishing without running %s",
            max_tool_iterations, last.tool_calls[0].get("name"),
        )
        return END
    return "tools"


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm(settings: Settings, tools: Sequence[BaseTool]):
    """Claude with the fixed tool set bound, a request timeout and bounded retries."""
    llm = ChatAnthropic(
        model=settings.policy.model_name,
        api_key=settings.anthropic_api_key,
        temperature=0.3,
        max_tokens=settings.policy.max_tokens,
        timeout=settings.llm_timeout_seconds,
        max_retries=settings.llm_max_retries,
    )
    return llm.bind_tools(list(tools))


# ── Agent loop ───────────────────────────────────────────────────────


class AgentLoop:
    """Bounded model ⇄ tool loop, compiled once and reused for every delivery."""

    def __init__(self, policy: AgentPolicy, dispatcher: ToolDispatcher, llm: Any) -> None:
        self._policy = policy
        self._dispatcher = dispatcher
        self._llm = llm
        self._graph = self._compile()

    @property
    def policy(self) -> AgentPolicy:
        return self._policy

    # ── Nodes ────────────────────────────────────────────────────────

    def _model_node(self, state: AgentState) -> dict:
        logger.debug(
            "model node — %s, %d turns, %d tool iterations so far",
            self._policy.model_name, len(state["messages"]), state.get("tool_iterations", 0),
        )
        system = SystemMessage(content=state["system_prompt"])
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke([system] + state["messages"])
        except Exception as exc:
            metrics.record_failure(
                "anthropic", "completion",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "completion", latency_ms=elapsed)
        logger.debug("model responded in %.0fms (stop_reason=%s)", elapsed,
                     (response.response_metadata or {}).get("stop_reason"))
        return {"messages": [response]}

    def _tools_node(self, state: AgentState) -> dict:
        calls = state["messages"][-1].tool_calls
        invocation = ToolInvocation.from_tool_call(calls[0])
        logger.info("Model uses tool: %s", invocation.name)
        result = self._dispatcher.dispatch(invocation, sender_id=state.get("sender_id"))

        appended: list[ToolMessage] = [_tool_message(invocation.call_id, invocation.name, result)]
        for skipped in calls[1:]:
            logger.info("Skipping extra tool call %s in the same response", skipped.get("name"))
            appended.append(
                _tool_message(skipped.get("id") or "", skipped.get("name") or "", ToolResult.failure(NOT_EXECUTED_ERROR))
            )
        return {"messages": appended, "tool_iterations": state.get("tool_iterations", 0) + 1}

    # ── Graph assembly ───────────────────────────────────────────────

    def _compile(self):
        max_iterations = self._policy.max_tool_iterations

        def route(state: AgentState) -> str:
            return next_step(state, max_iterations)

        graph = StateGraph(AgentState)
        graph.add_node("model", self._model_node)
        graph.add_node("tools", self._tools_node)
        graph.set_entry_point("model")
        graph.add_conditional_edges("model", route, {"tools": "tools", END: END})
        graph.add_edge("tools", "model")
        return graph.compile()

    def _recursion_limit(self) -> int:
        # model + tools per iteration, the final model call, and headroom
        return 2 * self._policy.max_tool_iterations + 5

    # ── Public API ───────────────────────────────────────────────────

    def run(
        self,
        turns: Sequence[BaseMessage],
        inbound_text: str,
        *,
        sender_id: str | None = None,
        transcript: str = "",
    ) -> AgentOutcome:
        """Drive the loop to a final answer for *inbound_text*.

        *turns* is the prior conversation.  When it already ends with the
        inbound message (the adapter logs before building context) the
        message is not appended a second time.
        """
        messages = list(turns)
        last = messages[-1] if messages else None
        if not (isinstance(last, HumanMessage) and last.content == inbound_text):
            messages.append(HumanMessage(content=inbound_text))

        system_prompt = build_system_prompt(
            self._policy.system_instructions,
            transcript if self._policy.include_transcript else "",
        )
        logger.info("Running agent (%s) with %d context turns", self._policy.name, len(messages))
        result = self._graph.invoke(
            {
                "messages": messages,
                "system_prompt": system_prompt,
                "sender_id": sender_id,
                "tool_iterations": 0,
            },
            config={"recursion_limit": self._recursion_limit()},
        )

        final = result["messages"][-1]
        iterations = result.get("tool_iterations", 0)
        stopped_by_guard = (
            isinstance(final, AIMessage)
            and wants_tool(final)
            and bool(final.tool_calls)
            and iterations >= self._policy.max_tool_iterations
        )
        try:
            text = first_text(final)
        except MalformedModelOutput:
            logger.warning("Final response had no text; using fallback reply")
            text = self._policy.fallback_text

        logger.info("Agent finished after %d tool iteration(s)%s",
                    iterations, " (guard)" if stopped_by_guard else "")
        return AgentOutcome(text=text, tool_iterations=iterations, stopped_by_guard=stopped_by_guard)


def _tool_message(call_id: str, name: str, result: ToolResult) -> ToolMessage:
    return ToolMessage(
        content=result.to_json(),
        tool_call_id=call_id,
        name=name,
        status="success" if result.ok else "error",
    )


def create_agent_loop(settings: Settings, dispatcher: ToolDispatcher) -> AgentLoop:
    """Build the agent loop for the configured policy and Claude model."""
    loop = AgentLoop(settings.policy, dispatcher, _build_llm(settings, dispatcher.tools))
    logger.debug(
        "Agent compiled — policy: %s, model: %s, tools: %d, max tool iterations: %d",
        settings.policy.name, settings.policy.model_name,
        len(dispatcher.tools), settings.policy.max_tool_iterations,
    )
    return loop
