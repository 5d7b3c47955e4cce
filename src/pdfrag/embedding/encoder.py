"""Embedding model management.

Chunk texts are grouped into fixed-size batches (one backend call each) and a
bounded pool of workers drains the batch queue. Every worker writes into the
slots its batch came from, so output order matches input order no matter
which batch finishes first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence

import httpx
import numpy as np

from pdfrag.config import DEFAULT_EMBEDDING_URL, DEFAULT_MODEL, DEFAULT_QUERY_PREFIX, RagConfig

LOGGER = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[int, int], None]]


class EmbeddingError(RuntimeError):
    """A batch could not be embedded; the whole operation is abandoned."""


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 20
    concurrency: int = 5
    query_prefix: str = DEFAULT_QUERY_PREFIX
    api_url: str = DEFAULT_EMBEDDING_URL
    api_key: str | None = None
    timeout: float = 60.0
    normalize: bool = True
    device: str | None = None

    @classmethod
    def from_rag_config(cls, config: RagConfig) -> "EmbeddingConfig":
        return cls(
            model_name=config.embedding_model,
            batch_size=config.embedding_batch_size,
            concurrency=config.embedding_concurrency,
            query_prefix=config.query_prefix,
            api_url=config.embedding_url,
            api_key=config.api_key,
            timeout=config.request_timeout,
        )


class EmbeddingBackend(Protocol):
    async def embed_batch(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        ...

    async def aclose(self) -> None:
        ...


class RemoteEmbeddingBackend:
    """OpenAI-compatible ``/embeddings`` endpoint over a shared ``httpx.AsyncClient``."""

    def __init__(self, config: EmbeddingConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout, connect=10.0),
            follow_redirects=True,
        )

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        response = await self._client.post(
            self.config.api_url,
            json={"model": self.config.model_name, "input": list(texts)},
            headers=headers,
        )
        if response.is_error:
            raise EmbeddingError(
                f"Embedding API error ({response.status_code}): {response.text}"
            )
        try:
            items: List[dict[str, Any]] = response.json()["data"]
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingError(f"Malformed embedding response: {exc}") from exc
        if all("index" in item for item in items):
            items = sorted(items, key=lambda item: item["index"])
        return [item["embedding"] for item in items]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class SentenceTransformerBackend:
    """Local model, for running without an API key."""

    def __init__(self, config: EmbeddingConfig) -> None:
        from sentence_transformers import SentenceTransformer

        self.config = config
        self._model = SentenceTransformer(config.model_name, device=config.device)
        LOGGER.info("Loaded local embedding model %s", config.model_name)

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        return await asyncio.to_thread(
            self._model.encode,
            list(texts),
            batch_size=len(texts),
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )

    async def aclose(self) -> None:
        return None


class EmbeddingModel:
    """Batched, concurrency-bounded embedding of passages and queries."""

    def __init__(self, config: EmbeddingConfig | None = None, backend: EmbeddingBackend | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self.backend = backend or RemoteEmbeddingBackend(self.config)

    @classmethod
    def from_rag_config(cls, config: RagConfig) -> "EmbeddingModel":
        embedding_config = EmbeddingConfig.from_rag_config(config)
        if config.embedding_backend == "local":
            return cls(embedding_config, SentenceTransformerBackend(embedding_config))
        return cls(embedding_config)

    @property
    def model_name(self) -> str:
        return self.config.model_name

    async def embed(self, texts: Sequence[str], on_progress: ProgressCallback = None) -> np.ndarray:
        """Return one float32 row per input text, in input order.

        Any batch failure cancels the remaining workers and propagates.
        """
        texts = list(texts)
        total = len(texts)
        if total == 0:
            return np.empty((0, 0), dtype="float32")

        size = max(1, self.config.batch_size)
        queue: asyncio.Queue[tuple[int, List[str]]] = asyncio.Queue()
        for start in range(0, total, size):
            queue.put_nowait((start, texts[start : start + size]))

        results: List[Any] = [None] * total
        completed = 0

        async def worker() -> None:
            nonlocal completed
            while True:
                try:
                    start, batch = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                vectors = await self.backend.embed_batch(batch)
                if len(vectors) != len(batch):
                    raise EmbeddingError(
                        f"Expected {len(batch)} embeddings, got {len(vectors)}"
                    )
                for offset, vector in enumerate(vectors):
                    results[start + offset] = vector
                completed += len(batch)
                if on_progress is not None:
                    on_progress(min(completed, total), total)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(max(1, self.config.concurrency), queue.qsize()))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        return np.asarray(results, dtype="float32")

    async def embed_query(self, text: str) -> np.ndarray:
        """Embed a search query with the instruction prefix."""
        vectors = await self.embed([self.config.query_prefix + text])
        return vectors[0]

    async def aclose(self) -> None:
        await self.backend.aclose()
