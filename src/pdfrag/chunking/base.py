"""Chunking strategy interface."""

from __future__ import annotations

from typing import List, Protocol

from pdfrag.models import ExtractedDocument, TextChunk


class ChunkingStrategy(Protocol):
    """Turns an extracted document into ordered, bounded-length chunks."""

    name: str

    def chunk(self, document: ExtractedDocument) -> List[TextChunk]:
        ...
