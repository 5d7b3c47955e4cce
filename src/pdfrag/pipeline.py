"""Pipeline orchestration: incremental indexing, index build, and querying."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Tuple

from pdfrag.chunking.registry import get_strategy
from pdfrag.config import RagConfig
from pdfrag.context import build_context, format_sources, load_page_images
from pdfrag.embedding.encoder import EmbeddingModel
from pdfrag.index.indexer import Indexer, IndexStats
from pdfrag.index.manifest import ManifestStore
from pdfrag.index.search import ChunkIndex, build_index, retrieve
from pdfrag.index.storage import VectorArtifactStore
from pdfrag.ingestion.page_renderer import PageRenderer
from pdfrag.models import QueryResult, StoredChunk

LOGGER = logging.getLogger(__name__)


def load_all_chunks(
    manifest: ManifestStore,
    vectors: VectorArtifactStore,
    *,
    embedding_model: str | None = None,
    chunking_strategy: str | None = None,
) -> Tuple[List[StoredChunk], int]:
    """Concatenate every usable artifact in manifest order.

    Entries built with another model or strategy (left behind when their
    reindex failed) are skipped, as are artifacts whose vector width differs
    from the first one loaded. Returns the flat chunk list and the number of
    documents that loaded.
    """
    chunks: List[StoredChunk] = []
    documents = 0
    dimension: int | None = None
    for file_path, entry in manifest.items():
        if embedding_model is not None and chunking_strategy is not None:
            if not entry.matches_config(embedding_model, chunking_strategy):
                LOGGER.warning(
                    "Skipping stale vectors for %s (built with %s/%s)",
                    file_path,
                    entry.embedding_model,
                    entry.chunking_strategy,
                )
                continue
        try:
            document = vectors.load(entry.vector_file)
        except Exception as exc:
            LOGGER.warning("Skipping unreadable vectors for %s: %s", file_path, exc)
            continue
        if document.chunks:
            width = int(document.chunks[0].vector.shape[-1])
            if dimension is None:
                dimension = width
            elif width != dimension:
                LOGGER.warning(
                    "Skipping vectors for %s: dimension %d, expected %d", file_path, width, dimension
                )
                continue
        chunks.extend(document.chunks)
        documents += 1
    return chunks, documents


class RagPipeline:
    """Read-only query handle over the index built at startup."""

    def __init__(
        self,
        config: RagConfig,
        embedder: EmbeddingModel,
        manifest: ManifestStore,
        renderer: PageRenderer,
        chunks: List[StoredChunk],
        index: ChunkIndex,
        *,
        document_count: int,
        stats: IndexStats | None = None,
    ) -> None:
        self.config = config
        self.embedder = embedder
        self.manifest = manifest
        self.renderer = renderer
        self.chunks = chunks
        self.index = index
        self.document_count = document_count
        self.stats = stats or IndexStats()

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    async def query(self, text: str) -> QueryResult:
        """Return context for ``text``; an empty result when nothing relevant exists.

        Retrieval errors are logged and reported as "no context" so a failed
        lookup never breaks the caller's conversation turn.
        """
        if not self.chunks:
            return QueryResult()

        try:
            retrieved = await retrieve(
                text,
                self.chunks,
                self.index,
                self.embedder,
                top_k=self.config.top_k,
                score_threshold=self.config.score_threshold,
            )
        except Exception as exc:
            LOGGER.warning("Retrieval failed, continuing without context: %s", exc)
            return QueryResult()

        context = build_context(retrieved)
        if context is None:
            return QueryResult()

        images = await asyncio.to_thread(
            load_page_images,
            context.sources,
            self.manifest,
            self.renderer,
            max_images=self.config.max_page_images,
        )
        return QueryResult(
            context=context.text_block,
            sources_line=format_sources(context.sources),
            page_images=images,
        )

    async def aclose(self) -> None:
        await self.embedder.aclose()

    async def __aenter__(self) -> "RagPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


async def init_pipeline(
    config: RagConfig,
    *,
    embedder: EmbeddingModel | None = None,
    renderer: PageRenderer | None = None,
) -> RagPipeline:
    """Synchronize the cache with the data directory and build the index.

    Raises ``MissingCredentialsError`` before touching any file when the
    remote backend has no API key.
    """
    strategy = get_strategy(config.chunking_strategy, max_length=config.max_chunk_length)
    if embedder is None:
        config.require_api_key()
        embedder = EmbeddingModel.from_rag_config(config)
    if renderer is None:
        renderer = PageRenderer(
            config.images_dir, scale=config.render_scale, concurrency=config.render_concurrency
        )

    manifest = ManifestStore.load(config.manifest_path)
    vectors = VectorArtifactStore(config.vectors_dir)
    indexer = Indexer(
        embedder,
        manifest,
        vectors,
        renderer,
        strategy,
        data_dir=config.data_dir,
        embedding_model=config.embedding_model,
        hash_prefix_length=config.hash_prefix_length,
    )
    stats = await indexer.index()

    chunks, documents = await asyncio.to_thread(
        load_all_chunks,
        manifest,
        vectors,
        embedding_model=config.embedding_model,
        chunking_strategy=strategy.name,
    )
    index = build_index(chunks)
    LOGGER.info("Ready: %d document(s), %d chunks", documents, len(chunks))

    return RagPipeline(
        config,
        embedder,
        manifest,
        renderer,
        chunks,
        index,
        document_count=documents,
        stats=stats,
    )
