"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import List


def list_pdf_paths(directory: Path) -> List[Path]:
    """Return absolute paths of the PDFs directly inside ``directory``.

    A missing or unreadable directory yields no files.
    """
    try:
        children = sorted(Path(directory).iterdir())
    except OSError:
        return []
    return [
        child.resolve()
        for child in children
        if child.suffix.lower() == ".pdf" and child.is_file()
    ]


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def hash_prefix(digest: str, length: int = 16) -> str:
    return digest[:length]
