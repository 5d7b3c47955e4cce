"""Change detection between the watched directory and the manifest."""

from __future__ import annotations

import logging
from pathlib import Path

from pdfrag.index.manifest import ManifestStore
from pdfrag.models import ScanResult
from pdfrag.utils.files import compute_sha256, list_pdf_paths

LOGGER = logging.getLogger(__name__)


def scan_files(
    data_dir: Path,
    manifest: ManifestStore,
    *,
    embedding_model: str,
    chunking_strategy: str,
) -> ScanResult:
    """Classify every PDF in ``data_dir`` and every manifest entry.

    An entry is reusable when both the embedding model and the chunking
    strategy still match and either size+mtime match (no hashing) or the
    content hash matches. On a hash match the entry's size/mtime are
    refreshed in memory so the next scan takes the fast path; saving is
    left to the caller. A recorded file that cannot be read is left out of
    every list, so its entry and artifacts stay as they are.
    """
    result = ScanResult()
    current = {str(path): path for path in list_pdf_paths(data_dir)}

    for file_path, _ in manifest.items():
        if file_path not in current:
            result.deleted.append(file_path)

    for file_path, path in current.items():
        entry = manifest.get(file_path)
        if entry is None:
            result.new.append(file_path)
            continue

        if not entry.matches_config(embedding_model, chunking_strategy):
            result.changed.append(file_path)
            continue

        try:
            stat = path.stat()
            if entry.mtime == stat.st_mtime and entry.size == stat.st_size:
                result.unchanged.append(file_path)
                continue
            digest = compute_sha256(path)
        except OSError as exc:
            LOGGER.warning("Cannot read %s, leaving it for the next run: %s", file_path, exc)
            continue

        if entry.hash == digest:
            LOGGER.debug("Content unchanged for %s, refreshing mtime/size", file_path)
            entry.mtime = stat.st_mtime
            entry.size = stat.st_size
            result.refreshed.append(file_path)
            result.unchanged.append(file_path)
            continue

        result.changed.append(file_path)

    return result
