"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping

DEFAULT_MODEL = "qwen/qwen3-embedding-8b"
DEFAULT_EMBEDDING_URL = "https://openrouter.ai/api/v1/embeddings"
DEFAULT_QUERY_PREFIX = "Instruct: Retrieve relevant document passages\nQuery: "
API_KEY_VARS = ("OPENROUTER_API_KEY", "PDFRAG_API_KEY")


class MissingCredentialsError(RuntimeError):
    """Raised when the remote embedding backend has no API key."""


@dataclass(slots=True)
class RagConfig:
    data_dir: Path = Path("data")
    cache_dir: Path = Path(".rag-cache")

    embedding_backend: Literal["remote", "local"] = "remote"
    embedding_model: str = DEFAULT_MODEL
    embedding_url: str = DEFAULT_EMBEDDING_URL
    embedding_batch_size: int = 20
    embedding_concurrency: int = 5
    request_timeout: float = 60.0
    query_prefix: str = DEFAULT_QUERY_PREFIX
    api_key: str | None = None

    top_k: int = 5
    score_threshold: float = 0.3

    max_chunk_length: int = 2000
    chunking_strategy: str = "page-chunker"

    render_scale: float = 1.5
    render_concurrency: int = 3
    max_page_images: int = 4
    hash_prefix_length: int = 16

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: object
    ) -> "RagConfig":
        env = os.environ if environ is None else environ
        config = cls(**overrides)  # type: ignore[arg-type]
        if config.api_key is None:
            config.api_key = next((env[name] for name in API_KEY_VARS if env.get(name)), None)
        return config

    def resolve(self, base_dir: Path | None = None) -> "RagConfig":
        """Anchor relative data/cache directories at ``base_dir`` (cwd by default)."""
        base = Path.cwd() if base_dir is None else Path(base_dir)
        if not Path(self.data_dir).is_absolute():
            self.data_dir = base / self.data_dir
        if not Path(self.cache_dir).is_absolute():
            self.cache_dir = base / self.cache_dir
        return self

    @property
    def vectors_dir(self) -> Path:
        return Path(self.cache_dir) / "vectors"

    @property
    def images_dir(self) -> Path:
        return Path(self.cache_dir) / "images"

    @property
    def manifest_path(self) -> Path:
        return Path(self.cache_dir) / "manifest.json"

    def require_api_key(self) -> str | None:
        if self.embedding_backend == "remote" and not self.api_key:
            raise MissingCredentialsError(
                f"No API key configured; set one of {', '.join(API_KEY_VARS)}"
            )
        return self.api_key
