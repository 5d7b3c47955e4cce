"""Tests for the incremental Indexer."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from pdfrag.chunking.page_chunker import PageChunker
from pdfrag.config import RagConfig
from pdfrag.embedding.encoder import EmbeddingError, EmbeddingModel
from pdfrag.index.indexer import Indexer, IndexStats
from pdfrag.index.manifest import ManifestStore
from pdfrag.index.storage import VectorArtifactStore
from pdfrag.ingestion.page_renderer import PageRenderer
from pdfrag.models import ManifestEntry


class TestIndexStats:
    """Test IndexStats tracking."""

    def test_init_defaults(self) -> None:
        """Test default initialization."""
        stats = IndexStats()
        assert (stats.inserted, stats.updated, stats.skipped, stats.failed) == (0, 0, 0, 0)
        assert stats.processed_files == []

    @pytest.mark.parametrize("status", ["inserted", "updated", "skipped"])
    def test_increment_known(self, status: str) -> None:
        """Test incrementing known status counts."""
        stats = IndexStats()
        stats.increment(status, "/tmp/a.pdf")
        assert getattr(stats, status) == 1
        assert stats.failed == 0
        assert stats.processed_files == ["/tmp/a.pdf"]

    def test_increment_unknown_counts_failed(self) -> None:
        """Test unknown statuses count as failed."""
        stats = IndexStats()
        stats.increment("weird", "/tmp/a.pdf")
        assert stats.failed == 1


def _make_indexer(
    config: RagConfig,
    embedder: EmbeddingModel,
    *,
    manifest: ManifestStore | None = None,
    renderer: PageRenderer | None = None,
    model: str | None = None,
    strategy: PageChunker | None = None,
) -> Indexer:
    return Indexer(
        embedder,
        manifest or ManifestStore.load(config.manifest_path),
        VectorArtifactStore(config.vectors_dir),
        renderer or PageRenderer(config.images_dir, scale=config.render_scale),
        strategy or PageChunker(max_length=config.max_chunk_length),
        data_dir=config.data_dir,
        embedding_model=model or config.embedding_model,
    )


class TestIndexer:
    """Test per-file transitions."""

    async def test_new_file_indexed(self, rag_config, embedder, keyword_backend, make_pdf) -> None:
        """Test a new file gets vectors, images and an entry."""
        pdf = make_pdf("data/alpha.pdf", ["Alpha Beta Gamma", "Delta"])

        stats = await _make_indexer(rag_config, embedder).index()

        assert stats.inserted == 1
        manifest = ManifestStore.load(rag_config.manifest_path)
        entry = manifest.get(str(pdf.resolve()))
        assert entry is not None
        assert entry.chunk_count == 2
        assert entry.embedding_model == rag_config.embedding_model
        assert entry.chunking_strategy == "page-chunker"
        assert entry.vector_file == f"{entry.image_hash_prefix}.npz"
        assert len(entry.image_hash_prefix) == 16
        assert entry.hash.startswith(entry.image_hash_prefix)
        assert (rag_config.vectors_dir / entry.vector_file).exists()
        assert (rag_config.images_dir / entry.image_hash_prefix / "page-1.png").exists()
        assert (rag_config.images_dir / entry.image_hash_prefix / "page-2.png").exists()
        assert keyword_backend.texts_embedded == 2

    async def test_second_run_does_no_work(self, rag_config, embedder, keyword_backend, make_pdf) -> None:
        """Test an unchanged directory triggers no work."""
        make_pdf("data/alpha.pdf", ["Alpha Beta Gamma"])
        await _make_indexer(rag_config, embedder).index()
        before = rag_config.manifest_path.read_text()
        calls_before = len(keyword_backend.calls)

        renderer = PageRenderer(rag_config.images_dir)
        renderer.render = AsyncMock()
        with patch("pdfrag.index.indexer.extract_document") as mock_extract:
            stats = await _make_indexer(rag_config, embedder, renderer=renderer).index()

        mock_extract.assert_not_called()
        renderer.render.assert_not_awaited()
        assert len(keyword_backend.calls) == calls_before
        assert stats.unchanged == 1
        assert stats.inserted == stats.updated == 0
        assert rag_config.manifest_path.read_text() == before

    async def test_changed_file_reindexed_and_old_artifacts_removed(
        self, rag_config, embedder, make_pdf
    ) -> None:
        """Test changed files are reindexed and old artifacts removed."""
        pdf = make_pdf("data/doc.pdf", ["Alpha"])
        await _make_indexer(rag_config, embedder).index()
        old = ManifestStore.load(rag_config.manifest_path).get(str(pdf.resolve()))

        make_pdf("data/doc.pdf", ["Beta Gamma", "Delta"])
        stat = pdf.stat()
        os.utime(pdf, (stat.st_atime, old.mtime + 10))
        stats = await _make_indexer(rag_config, embedder).index()

        new = ManifestStore.load(rag_config.manifest_path).get(str(pdf.resolve()))
        assert stats.updated == 1
        assert new.hash != old.hash
        assert new.chunk_count == 2
        assert not (rag_config.vectors_dir / old.vector_file).exists()
        assert not (rag_config.images_dir / old.image_hash_prefix).exists()
        assert (rag_config.vectors_dir / new.vector_file).exists()

    async def test_model_change_invalidates(self, rag_config, embedder, keyword_backend, make_pdf) -> None:
        """Test a new embedding model forces reindexing."""
        make_pdf("data/doc.pdf", ["Alpha"])
        await _make_indexer(rag_config, embedder).index()

        stats = await _make_indexer(rag_config, embedder, model="another-model").index()

        assert stats.updated == 1
        entry = next(e for _, e in ManifestStore.load(rag_config.manifest_path).items())
        assert entry.embedding_model == "another-model"

    async def test_strategy_change_invalidates(self, rag_config, embedder, make_pdf) -> None:
        """Test a new chunking strategy forces reindexing."""
        make_pdf("data/doc.pdf", ["Alpha"])
        await _make_indexer(rag_config, embedder).index()

        class OtherChunker(PageChunker):
            name = "other-chunker"

        stats = await _make_indexer(rag_config, embedder, strategy=OtherChunker()).index()

        assert stats.updated == 1

    async def test_deleted_file_cleaned_up(self, rag_config, embedder, make_pdf) -> None:
        """Test deleted files lose their entry and artifacts."""
        pdf = make_pdf("data/doc.pdf", ["Alpha"])
        await _make_indexer(rag_config, embedder).index()
        entry = ManifestStore.load(rag_config.manifest_path).get(str(pdf.resolve()))

        pdf.unlink()
        stats = await _make_indexer(rag_config, embedder).index()

        assert stats.deleted == 1
        assert len(ManifestStore.load(rag_config.manifest_path)) == 0
        assert not (rag_config.vectors_dir / entry.vector_file).exists()
        assert not (rag_config.images_dir / entry.image_hash_prefix).exists()

    async def test_identical_copy_keeps_shared_artifacts(self, rag_config, embedder, make_pdf) -> None:
        """Test shared artifacts survive deleting one copy."""
        original = make_pdf("data/a.pdf", ["Alpha"])
        copy = rag_config.data_dir / "b.pdf"
        copy.write_bytes(original.read_bytes())
        await _make_indexer(rag_config, embedder).index()
        entry = ManifestStore.load(rag_config.manifest_path).get(str(copy.resolve()))

        original.unlink()
        await _make_indexer(rag_config, embedder).index()

        assert (rag_config.vectors_dir / entry.vector_file).exists()
        assert (rag_config.images_dir / entry.image_hash_prefix / "page-1.png").exists()

    async def test_zero_chunks_skipped(self, rag_config, embedder, keyword_backend, make_pdf) -> None:
        """Test documents without text are skipped."""
        make_pdf("data/blank.pdf", [""])

        stats = await _make_indexer(rag_config, embedder).index()

        assert stats.skipped == 1
        assert len(ManifestStore.load(rag_config.manifest_path)) == 0
        assert keyword_backend.calls == []

    async def test_failure_isolated_to_file(self, rag_config, embedder, make_pdf) -> None:
        """Test one broken file does not stop the others."""
        make_pdf("data/a.pdf", ["Alpha"])
        broken = rag_config.data_dir / "b.pdf"
        broken.write_bytes(b"not a pdf")
        make_pdf("data/c.pdf", ["Gamma"])

        stats = await _make_indexer(rag_config, embedder).index()

        manifest = ManifestStore.load(rag_config.manifest_path)
        assert stats.inserted == 2
        assert stats.failed == 1
        assert str(broken.resolve()) not in manifest
        assert len(manifest) == 2

    async def test_embedding_failure_leaves_entry_untouched(self, rag_config, embedder, make_pdf) -> None:
        """Test a failed reindex keeps the previous entry."""
        pdf = make_pdf("data/doc.pdf", ["Alpha"])
        await _make_indexer(rag_config, embedder).index()
        before = rag_config.manifest_path.read_text()

        make_pdf("data/doc.pdf", ["Beta"])
        os.utime(pdf, (pdf.stat().st_atime, pdf.stat().st_mtime + 10))
        failing = EmbeddingModel(embedder.config, backend=AsyncMock())
        failing.backend.embed_batch.side_effect = EmbeddingError("down")

        stats = await _make_indexer(rag_config, failing).index()

        assert stats.failed == 1
        assert rag_config.manifest_path.read_text() == before

    async def test_missing_data_dir(self, tmp_path: Path, embedder) -> None:
        """Test a missing data directory indexes nothing."""
        config = RagConfig(data_dir=tmp_path / "nothing", cache_dir=tmp_path / "cache")

        stats = await _make_indexer(config, embedder).index()

        assert stats == IndexStats()


class TestImageBackfill:
    """Test migration of entries without an image key."""

    async def _legacy_entry(self, rag_config, embedder, make_pdf) -> tuple[Path, ManifestEntry]:
        pdf = make_pdf("data/doc.pdf", ["Alpha"])
        await _make_indexer(rag_config, embedder).index()
        manifest = ManifestStore.load(rag_config.manifest_path)
        entry = manifest.get(str(pdf.resolve()))
        PageRenderer(rag_config.images_dir).remove(entry.image_hash_prefix)
        entry.image_hash_prefix = None
        manifest.save()
        return pdf, entry

    async def test_backfill_renders(self, rag_config, embedder, make_pdf) -> None:
        """Test entries without an image key get rendered."""
        pdf, entry = await self._legacy_entry(rag_config, embedder, make_pdf)

        stats = await _make_indexer(rag_config, embedder).index()

        migrated = ManifestStore.load(rag_config.manifest_path).get(str(pdf.resolve()))
        assert stats.migrated == 1
        assert migrated.image_hash_prefix == entry.vector_file[: -len(".npz")]
        assert (rag_config.images_dir / migrated.image_hash_prefix / "page-1.png").exists()

    async def test_backfill_render_failure_still_saves(self, rag_config, embedder, make_pdf) -> None:
        """Test the image key is saved even if rendering fails."""
        pdf, entry = await self._legacy_entry(rag_config, embedder, make_pdf)
        renderer = PageRenderer(rag_config.images_dir)
        renderer.render = AsyncMock(side_effect=RuntimeError("render failed"))

        stats = await _make_indexer(rag_config, embedder, renderer=renderer).index()

        saved = json.loads(rag_config.manifest_path.read_text())[str(pdf.resolve())]
        assert stats.migrated == 1
        assert saved["image_hash_prefix"] == entry.vector_file[: -len(".npz")]
