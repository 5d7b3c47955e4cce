"""Incremental document indexing."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from pdfrag.chunking.base import ChunkingStrategy
from pdfrag.embedding.encoder import EmbeddingModel
from pdfrag.index.manifest import ManifestStore
from pdfrag.index.scanner import scan_files
from pdfrag.index.storage import VectorArtifactStore, artifact_name, key_from_artifact
from pdfrag.ingestion.page_renderer import PageRenderer
from pdfrag.ingestion.pdf_loader import extract_document
from pdfrag.models import DocumentVectors, ManifestEntry, StoredChunk
from pdfrag.utils.files import hash_prefix

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    unchanged: int = 0
    deleted: int = 0
    migrated: int = 0
    processed_files: list[str] = field(default_factory=list)

    def increment(self, status: str, path: str) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class Indexer:
    """Brings the on-disk cache in line with the watched directory.

    Documents are processed one after another. A failure while processing
    one file is logged and leaves that file's manifest entry as it was, so
    the next run retries it.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        manifest: ManifestStore,
        vectors: VectorArtifactStore,
        renderer: PageRenderer,
        strategy: ChunkingStrategy,
        *,
        data_dir: Path,
        embedding_model: str,
        hash_prefix_length: int = 16,
    ) -> None:
        self.embedder = embedder
        self.manifest = manifest
        self.vectors = vectors
        self.renderer = renderer
        self.strategy = strategy
        self.data_dir = Path(data_dir)
        self.embedding_model = embedding_model
        self.hash_prefix_length = hash_prefix_length

    async def index(self) -> IndexStats:
        stats = IndexStats()
        LOGGER.info("Scanning %s for PDFs...", self.data_dir)
        scan = scan_files(
            self.data_dir,
            self.manifest,
            embedding_model=self.embedding_model,
            chunking_strategy=self.strategy.name,
        )

        if scan.deleted:
            LOGGER.info("Cleaning up %d deleted file(s)", len(scan.deleted))
            stats.deleted = self.cleanup_deleted(scan.deleted)

        if scan.refreshed:
            self.manifest.save()

        if scan.new_or_changed:
            LOGGER.info("Processing %d new/changed file(s)", len(scan.new_or_changed))

        for path, status in [(p, "inserted") for p in scan.new] + [(p, "updated") for p in scan.changed]:
            try:
                if await self._index_single(Path(path)):
                    stats.increment(status, path)
                else:
                    stats.increment("skipped", path)
            except Exception as exc:
                LOGGER.error("Failed to process %s: %s", path, exc)
                stats.increment("failed", path)

        stats.unchanged = len(scan.unchanged)
        if scan.unchanged:
            LOGGER.info("%d file(s) cached, skipping", len(scan.unchanged))

        stats.migrated = await self._backfill_images()
        return stats

    async def _index_single(self, path: Path) -> bool:
        """Process one file; returns False when it yielded no chunks."""
        name = path.name
        data = await asyncio.to_thread(path.read_bytes)

        LOGGER.info("Extracting %s...", name)
        document = await asyncio.to_thread(extract_document, path, data)

        LOGGER.info("Chunking %s (%d pages)...", name, len(document.pages))
        chunks = self.strategy.chunk(document)
        if not chunks:
            LOGGER.warning("%s produced no chunks, skipping", name)
            return False

        LOGGER.info("Embedding %s (%d chunks)...", name, len(chunks))
        vectors = await self.embedder.embed(
            [chunk.text for chunk in chunks],
            on_progress=lambda done, total: LOGGER.info("Embedding %s: %d/%d", name, done, total),
        )

        digest = hashlib.sha256(data).hexdigest()
        key = hash_prefix(digest, self.hash_prefix_length)
        vector_file = artifact_name(key)
        stored = [
            StoredChunk(text=chunk.text, vector=vector, metadata=chunk.metadata)
            for chunk, vector in zip(chunks, vectors)
        ]
        await asyncio.to_thread(
            self.vectors.save,
            DocumentVectors(source=document.source, file_path=document.file_path, chunks=stored),
            vector_file,
        )

        LOGGER.info("Rendering page images for %s...", name)
        await self.renderer.render(
            path,
            key,
            on_progress=lambda done, total: LOGGER.info("Rendering %s: %d/%d pages", name, done, total),
        )

        stat = path.stat()
        file_path = str(path)
        previous = self.manifest.get(file_path)
        self.manifest.set(
            file_path,
            ManifestEntry(
                hash=digest,
                size=stat.st_size,
                mtime=stat.st_mtime,
                embedding_model=self.embedding_model,
                chunking_strategy=self.strategy.name,
                chunk_count=len(stored),
                vector_file=vector_file,
                image_hash_prefix=key,
            ),
        )
        self.manifest.save()

        if previous is not None and previous.vector_file != vector_file:
            self._remove_artifacts(file_path, previous)

        LOGGER.info("%s done (%d chunks)", name, len(stored))
        return True

    def cleanup_deleted(self, deleted: List[str]) -> int:
        """Drop manifest entries and cached artifacts for vanished files."""
        removed = 0
        for file_path in deleted:
            entry = self.manifest.remove(file_path)
            if entry is None:
                continue
            self._remove_artifacts(file_path, entry)
            removed += 1
        self.manifest.save()
        return removed

    def _remove_artifacts(self, file_path: str, entry: ManifestEntry) -> None:
        # Identical documents share content-addressed artifacts.
        if self.manifest.is_shared(file_path, entry.vector_file):
            return
        self.vectors.delete(entry.vector_file)
        if entry.image_hash_prefix:
            self.renderer.remove(entry.image_hash_prefix)

    async def _backfill_images(self) -> int:
        """Give entries written before page rendering existed an image key."""
        migrated = 0
        for file_path, entry in self.manifest.items():
            if entry.image_hash_prefix:
                continue
            key = key_from_artifact(entry.vector_file)
            entry.image_hash_prefix = key
            name = Path(file_path).name
            LOGGER.info("Rendering page images for %s (migration)...", name)
            try:
                await self.renderer.render(Path(file_path), key)
            except Exception as exc:
                LOGGER.warning("Failed to render images for %s, skipping: %s", name, exc)
            self.manifest.set(file_path, entry)
            self.manifest.save()
            migrated += 1
        return migrated
