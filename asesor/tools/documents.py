"""``consultar_documentos`` — property catalogue lookup tool."""

from __future__ import annotations

import logging

from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from asesor.errors import DownstreamUnavailable
from asesor.models import ToolResult
from asesor.services.knowledge import KnowledgeSource

logger = logging.getLogger(__name__)

TOOL_NAME = "consultar_documentos"


class ConsultarDocumentosArgs(BaseModel):
    query: str = Field(
        ...,
        description='Búsqueda específica (ej: "terrenos 500m2 Zapopan 2 millones")',
    )


def make_document_tool(source: KnowledgeSource) -> BaseTool:
    """Bind the lookup tool to a knowledge source."""

    @tool(TOOL_NAME, args_schema=ConsultarDocumentosArgs)
    def consultar_documentos(query: str) -> ToolResult:
        """Consulta información de propiedades disponibles. Usa cuando tengas suficiente información del cliente."""
        try:
            content = source.lookup(query)
        except DownstreamUnavailable as e:
            logger.error("Document lookup failed: %s", e)
            return ToolResult.failure(f"No se pudo consultar el catálogo de propiedades: {e}")
        return ToolResult.success(content=content, query=query)

    return consultar_documentos
