"""Read-only property catalogue lookup.

The catalogue is small, so every lookup returns the whole document: the
query is logged but does not filter anything.  The model reads the full text
and picks matching listings itself.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from asesor.errors import DownstreamUnavailable
from asesor.services.google_client import GoogleAPIClient

logger = logging.getLogger(__name__)


class KnowledgeSource(Protocol):
    def lookup(self, query: str) -> str:
        """Return catalogue text for *query*; raise ``DownstreamUnavailable`` on failure."""
        ...


def extract_document_text(document: dict[str, Any]) -> str:
    """Concatenate every paragraph ``textRun`` of a Docs API document."""
    parts: list[str] = []
    for element in document.get("body", {}).get("content", []):
        paragraph = element.get("paragraph")
        if not paragraph:
            continue
        for item in paragraph.get("elements", []):
            text_run = item.get("textRun")
            if text_run:
                parts.append(text_run.get("content", ""))
    return "".join(parts)


class GoogleDocsKnowledgeSource:
    """Catalogue kept in a Google Doc."""

    def __init__(self, client: GoogleAPIClient, document_id: str) -> None:
        self._client = client
        self._document_id = document_id

    def lookup(self, query: str) -> str:
        logger.info("Consulting Google Doc %s | query: %s", self._document_id, query)
        document = self._client.get_document(self._document_id)
        text = extract_document_text(document)
        logger.info("Document fetched, %d characters", len(text))
        return text


class StaticKnowledgeSource:
    """Catalogue read from a local text/markdown file (local development)."""

    def __init__(self, text: str) -> None:
        self._text = text

    @classmethod
    def from_file(cls, path: str | Path) -> StaticKnowledgeSource:
        try:
            return cls(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.error("Knowledge file not found at %s", path)
            return cls("")

    def lookup(self, query: str) -> str:
        if not self._text:
            raise DownstreamUnavailable("knowledge", "the property catalogue is not available")
        logger.debug("Static catalogue lookup | query: %s", query)
        return self._text
