"""Default chunker: split each page on its own, never across pages."""

from __future__ import annotations

from typing import List

from pdfrag.models import ChunkMetadata, ExtractedDocument, TextChunk
from pdfrag.utils.text import recursive_split


class PageChunker:
    name = "page-chunker"

    def __init__(self, max_length: int = 2000) -> None:
        if max_length < 1:
            raise ValueError("max_length must be positive")
        self.max_length = max_length

    def chunk(self, document: ExtractedDocument) -> List[TextChunk]:
        chunks: List[TextChunk] = []
        for page in document.pages:
            text = page.text.strip()
            if not text:
                continue
            for piece in recursive_split(text, self.max_length):
                piece = piece.strip()
                if not piece:
                    continue
                chunks.append(
                    TextChunk(
                        text=piece,
                        metadata=ChunkMetadata(
                            source=document.source,
                            page=page.page_number,
                            file_path=document.file_path,
                        ),
                    )
                )
        return chunks
