"""JSON-backed manifest of indexed source files."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterator, Tuple

from pdfrag.models import ManifestEntry

LOGGER = logging.getLogger(__name__)


class ManifestStore:
    """Per-file identity and artifact records keyed by absolute path.

    The whole manifest is rewritten on every ``save`` via a temporary file
    and ``os.replace`` so a crash never leaves a half-written manifest.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._entries: Dict[str, ManifestEntry] = {}

    @classmethod
    def load(cls, path: Path) -> "ManifestStore":
        store = cls(path)
        try:
            raw = json.loads(store.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return store
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable manifest %s: %s", store.path, exc)
            return store

        if not isinstance(raw, dict):
            LOGGER.warning("Ignoring malformed manifest %s", store.path)
            return store

        for file_path, data in raw.items():
            try:
                store._entries[file_path] = ManifestEntry.from_dict(data)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Dropping malformed manifest entry for %s: %s", file_path, exc)
        return store

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {key: entry.to_dict() for key, entry in sorted(self._entries.items())}
        fd, tmp_name = tempfile.mkstemp(prefix=".manifest-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, file_path: str) -> ManifestEntry | None:
        return self._entries.get(file_path)

    def set(self, file_path: str, entry: ManifestEntry) -> None:
        self._entries[file_path] = entry

    def remove(self, file_path: str) -> ManifestEntry | None:
        return self._entries.pop(file_path, None)

    def items(self) -> Iterator[Tuple[str, ManifestEntry]]:
        return iter(list(self._entries.items()))

    def is_shared(self, file_path: str, vector_file: str) -> bool:
        """True if another entry points at the same vector artifact."""
        return any(
            key != file_path and entry.vector_file == vector_file
            for key, entry in self._entries.items()
        )

    def __contains__(self, file_path: object) -> bool:
        return file_path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> Dict[str, Dict]:
        return {key: entry.to_dict() for key, entry in self._entries.items()}
