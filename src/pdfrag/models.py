"""Core pdfrag data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

import numpy as np


@dataclass(slots=True)
class ManifestEntry:
    """Last-seen state of one source file and the artifacts derived from it."""

    hash: str
    size: int
    mtime: float
    embedding_model: str
    chunking_strategy: str
    chunk_count: int
    vector_file: str
    image_hash_prefix: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestEntry":
        return cls(
            hash=str(data["hash"]),
            size=int(data["size"]),
            mtime=float(data["mtime"]),
            embedding_model=str(data["embedding_model"]),
            chunking_strategy=str(data["chunking_strategy"]),
            chunk_count=int(data["chunk_count"]),
            vector_file=str(data["vector_file"]),
            image_hash_prefix=data.get("image_hash_prefix") or None,
        )

    def matches_config(self, embedding_model: str, chunking_strategy: str) -> bool:
        return (
            self.embedding_model == embedding_model
            and self.chunking_strategy == chunking_strategy
        )


@dataclass(slots=True)
class PageContent:
    page_number: int
    text: str


@dataclass(slots=True)
class ExtractedDocument:
    """Page-numbered text of one PDF. Never persisted."""

    source: str
    file_path: str
    pages: List[PageContent]


@dataclass(slots=True)
class ChunkMetadata:
    source: str
    page: int
    file_path: str


@dataclass(slots=True)
class TextChunk:
    text: str
    metadata: ChunkMetadata


@dataclass(slots=True)
class StoredChunk:
    """A chunk paired with its embedding vector."""

    text: str
    vector: np.ndarray
    metadata: ChunkMetadata


@dataclass(slots=True)
class DocumentVectors:
    source: str
    file_path: str
    chunks: List[StoredChunk]


@dataclass(slots=True)
class RetrievedChunk:
    text: str
    metadata: ChunkMetadata
    score: float


@dataclass(slots=True)
class ScanResult:
    """Classification of the watched directory against the manifest."""

    new: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)

    @property
    def new_or_changed(self) -> List[str]:
        return [*self.new, *self.changed]


@dataclass(slots=True)
class SourceRef:
    source: str
    pages: List[int]
    file_path: str


@dataclass(slots=True)
class PageImage:
    source: str
    page: int
    data_url: str


@dataclass(slots=True)
class RagContext:
    text_block: str
    sources: List[SourceRef]


@dataclass(slots=True)
class QueryResult:
    """What a query hands back to the conversational layer.

    All three fields are empty together when nothing relevant was found.
    """

    context: str | None = None
    sources_line: str | None = None
    page_images: List[PageImage] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.context is None and not self.page_images
