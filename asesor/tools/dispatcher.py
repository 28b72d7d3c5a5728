"""Routes tool invocations from the model to the bound LangChain tools.

``dispatch`` never raises: unknown tools, invalid arguments and unexpected
exceptions all come back as a failure ``ToolResult``, because whatever
happens the result is sent back to the model as the next turn.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from langchain_core.tools import BaseTool
from pydantic import ValidationError

from asesor.models import ToolInvocation, ToolResult
from asesor.services.knowledge import KnowledgeSource
from asesor.services.metrics import metrics
from asesor.services.scheduling import LeadRecorder, SchedulingSink
from asesor.tools.appointments import make_appointment_tool
from asesor.tools.documents import make_document_tool

logger = logging.getLogger(__name__)

# Filled from the conversation when the model leaves it empty.
SENDER_ARGUMENT = "telefono_cliente"


class ToolDispatcher:
    """Fixed set of tools, looked up by name."""

    def __init__(self, tools: Sequence[BaseTool]) -> None:
        self._tools: dict[str, BaseTool] = {t.name: t for t in tools}

    @property
    def tools(self) -> list[BaseTool]:
        """Tool definitions, in registration order, for binding to the model."""
        return list(self._tools.values())

    def dispatch(self, invocation: ToolInvocation, *, sender_id: str | None = None) -> ToolResult:
        selected = self._tools.get(invocation.name)
        if selected is None:
            logger.warning("Model requested unknown tool %r", invocation.name)
            return ToolResult.failure(
                f"Herramienta desconocida: {invocation.name}. "
                f"Disponibles: {', '.join(self._tools)}."
            )

        arguments = dict(invocation.arguments)
        if sender_id and SENDER_ARGUMENT in selected.args and not arguments.get(SENDER_ARGUMENT):
            arguments[SENDER_ARGUMENT] = sender_id

        logger.info("Executing tool %s (call %s)", invocation.name, invocation.call_id)
        t0 = time.perf_counter()
        try:
            result = selected.invoke(arguments)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            metrics.record_failure("tool", invocation.name, error_type="ValidationError")
            logger.warning("Tool %s called with invalid arguments: %s", invocation.name, fields)
            return ToolResult.failure(
                f"Argumentos inválidos para {invocation.name}: {fields}. Revisa los campos requeridos."
            )
        except Exception as e:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure("tool", invocation.name, error_type=type(e).__name__, latency_ms=elapsed)
            logger.exception("Tool %s raised", invocation.name)
            return ToolResult.failure(f"Error al ejecutar {invocation.name}: {e}")

        elapsed = (time.perf_counter() - t0) * 1000
        if not isinstance(result, ToolResult):
            result = ToolResult.success(content=str(result))
        if result.ok:
            metrics.record_success("tool", invocation.name, latency_ms=elapsed)
        else:
            metrics.record_failure("tool", invocation.name, error_type="ToolFailure", latency_ms=elapsed)
        logger.debug("Tool %s finished in %.0fms (ok=%s)", invocation.name, elapsed, result.ok)
        return result


def create_tool_dispatcher(
    knowledge: KnowledgeSource,
    scheduler: SchedulingSink,
    leads: LeadRecorder,
) -> ToolDispatcher:
    """The deployment's fixed tool set: document lookup and visit scheduling."""
    return ToolDispatcher([
        make_document_tool(knowledge),
        make_appointment_tool(scheduler, leads),
    ])
