"""In-memory similarity index and query-time retrieval."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence, Tuple

import numpy as np

from pdfrag.models import RetrievedChunk, StoredChunk

LOGGER = logging.getLogger(__name__)


class QueryEmbedder(Protocol):
    async def embed_query(self, text: str) -> np.ndarray:
        ...


def _normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class FlatIndex:
    """Exact cosine-similarity index over normalized float32 vectors.

    Items are inserted with an opaque id and small metadata dict, then the
    index is sealed with ``build()`` before it answers queries.
    """

    def __init__(self) -> None:
        self._ids: List[str] = []
        self._metadata: List[dict] = []
        self._rows: List[np.ndarray] = []
        self._matrix: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self._ids)

    def insert(self, item_id: str, vector: np.ndarray, metadata: dict | None = None) -> None:
        if self._matrix is not None:
            raise RuntimeError("Index already built")
        self._ids.append(item_id)
        self._rows.append(np.asarray(vector, dtype="float32").ravel())
        self._metadata.append(metadata or {})

    def build(self) -> None:
        if self._rows:
            self._matrix = _normalize(np.vstack(self._rows))
        else:
            self._matrix = np.empty((0, 0), dtype="float32")
        self._rows = []

    def query(self, vector: np.ndarray, k: int) -> List[Tuple[str, dict, float]]:
        if self._matrix is None:
            raise RuntimeError("Index not built")
        count = min(k, len(self._ids))
        if count <= 0:
            return []

        query = _normalize(np.asarray(vector, dtype="float32").ravel())
        scores = self._matrix @ query

        if count < len(scores):
            top = np.argpartition(scores, -count)[-count:]
            top = top[np.argsort(scores[top])[::-1]]
        else:
            top = np.argsort(scores)[::-1]

        return [(self._ids[i], self._metadata[i], float(scores[i])) for i in top]


@dataclass(slots=True)
class ChunkIndex:
    """Search over a flat chunk array, addressed by zero-based offset."""

    total_chunks: int
    _index: FlatIndex | None = None
    _offsets: Dict[str, int] = field(default_factory=dict)

    def search(self, query_vector: np.ndarray, k: int) -> List[Tuple[int, float]]:
        if self._index is None or self.total_chunks == 0:
            return []
        return [
            (self._offsets[item_id], score)
            for item_id, _, score in self._index.query(query_vector, min(k, self.total_chunks))
        ]


def build_index(chunks: Sequence[StoredChunk]) -> ChunkIndex:
    """Build a fresh index over ``chunks``; offsets follow list order."""
    if not chunks:
        return ChunkIndex(total_chunks=0)

    index = FlatIndex()
    offsets: Dict[str, int] = {}
    for offset, chunk in enumerate(chunks):
        item_id = f"chunk-{offset}"
        index.insert(item_id, chunk.vector, {"source": chunk.metadata.source})
        offsets[item_id] = offset
    index.build()
    LOGGER.debug("Built index over %d chunks", len(index))
    return ChunkIndex(total_chunks=len(chunks), _index=index, _offsets=offsets)


async def retrieve(
    query: str,
    chunks: Sequence[StoredChunk],
    index: ChunkIndex,
    embedder: QueryEmbedder,
    *,
    top_k: int = 5,
    score_threshold: float = 0.3,
) -> List[RetrievedChunk]:
    """Embed ``query`` and return the top chunks scoring at least the threshold."""
    if index.total_chunks == 0:
        return []

    query_vector = await embedder.embed_query(query)
    results: List[RetrievedChunk] = []
    for offset, score in index.search(query_vector, top_k):
        if score < score_threshold:
            continue
        chunk = chunks[offset]
        results.append(RetrievedChunk(text=chunk.text, metadata=chunk.metadata, score=score))
    return results
