"""Per-document vector artifacts.

Each document's chunks live in one ``<key>.npz`` file: a float32 ``vectors``
matrix and a JSON ``records`` string carrying chunk text and metadata in the
same row order.
"""

from __future__ import annotations

import io
import json
import logging
import os
import tempfile
from pathlib import Path

import numpy as np

from pdfrag.models import ChunkMetadata, DocumentVectors, StoredChunk

LOGGER = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".npz"


def artifact_name(key: str) -> str:
    return f"{key}{ARTIFACT_SUFFIX}"


def key_from_artifact(vector_file: str) -> str:
    return vector_file[: -len(ARTIFACT_SUFFIX)] if vector_file.endswith(ARTIFACT_SUFFIX) else vector_file


class VectorArtifactStore:
    """Reads, writes and removes DocumentVectors files under one directory."""

    def __init__(self, vectors_dir: Path) -> None:
        self.vectors_dir = Path(vectors_dir)

    def path_for(self, vector_file: str) -> Path:
        return self.vectors_dir / vector_file

    def save(self, document: DocumentVectors, vector_file: str) -> Path:
        if document.chunks:
            vectors = np.vstack([np.asarray(c.vector, dtype="float32") for c in document.chunks])
        else:
            vectors = np.empty((0, 0), dtype="float32")
        records = json.dumps(
            {
                "source": document.source,
                "file_path": document.file_path,
                "chunks": [
                    {
                        "text": chunk.text,
                        "source": chunk.metadata.source,
                        "page": chunk.metadata.page,
                        "file_path": chunk.metadata.file_path,
                    }
                    for chunk in document.chunks
                ],
            },
            ensure_ascii=True,
        )
        buffer = io.BytesIO()
        np.savez(buffer, vectors=vectors, records=np.array(records))

        target = self.path_for(vector_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".vectors-", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(buffer.getvalue())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return target

    def load(self, vector_file: str) -> DocumentVectors:
        with np.load(self.path_for(vector_file), allow_pickle=False) as data:
            vectors = np.asarray(data["vectors"], dtype="float32")
            payload = json.loads(str(data["records"]))

        rows = payload["chunks"]
        if len(rows) != vectors.shape[0]:
            raise ValueError(
                f"{vector_file}: {len(rows)} chunks but {vectors.shape[0]} vectors"
            )
        chunks = [
            StoredChunk(
                text=row["text"],
                vector=vector,
                metadata=ChunkMetadata(
                    source=row["source"], page=int(row["page"]), file_path=row["file_path"]
                ),
            )
            for row, vector in zip(rows, vectors)
        ]
        return DocumentVectors(
            source=payload["source"], file_path=payload["file_path"], chunks=chunks
        )

    def delete(self, vector_file: str) -> bool:
        try:
            self.path_for(vector_file).unlink()
        except FileNotFoundError:
            return False
        return True
