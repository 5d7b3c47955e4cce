"""Shared fixtures: real PDFs on disk and a deterministic embedding backend."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, List, Sequence

import fitz
import pytest

from pdfrag.config import RagConfig
from pdfrag.embedding.encoder import EmbeddingConfig, EmbeddingModel

VOCABULARY = ("alpha", "beta", "gamma", "delta", "epsilon", "zebra", "quantum", "harbor")


def write_pdf(path: Path, pages: Sequence[str]) -> Path:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text)
    doc.save(str(path))
    doc.close()
    return path


class KeywordBackend:
    """Maps text onto keyword counts so similarity is predictable."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            words = re.findall(r"[a-z]+", text.lower())
            vectors.append([float(words.count(term)) for term in VOCABULARY])
        return vectors

    async def aclose(self) -> None:
        return None

    @property
    def texts_embedded(self) -> int:
        return sum(len(batch) for batch in self.calls)


@pytest.fixture
def make_pdf(tmp_path: Path) -> Callable[..., Path]:
    def factory(name: str, pages: Sequence[str]) -> Path:
        return write_pdf(tmp_path / name, pages)

    return factory


@pytest.fixture
def keyword_backend() -> KeywordBackend:
    return KeywordBackend()


@pytest.fixture
def embedder(keyword_backend: KeywordBackend) -> EmbeddingModel:
    return EmbeddingModel(EmbeddingConfig(batch_size=2, concurrency=2), backend=keyword_backend)


@pytest.fixture
def rag_config(tmp_path: Path) -> RagConfig:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return RagConfig(
        data_dir=data_dir,
        cache_dir=tmp_path / ".rag-cache",
        api_key="test-key",
        render_scale=0.5,
    )
